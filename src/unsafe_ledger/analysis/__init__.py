"""
Soundness Analysis Package.

Components that run over a finalized Item Model to classify every entity.

Modules:
    - ``visibility``: Scope resolution and soundness boundaries.
    - ``obligations``: Obligation edges, discharge matching and callee-first ordering.
    - ``checker``: Propagation and classification into terminal states.
    - ``diagnostics``: Ordered collection of findings.
"""
