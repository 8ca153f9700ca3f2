"""
Core Orchestration Package.

Modules:
    - ``engine``: The `LedgerEngine` pipeline driver.
    - ``analysis_result``: The `AnalysisResult` output model.
"""
