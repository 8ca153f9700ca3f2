"""
Item Model Package.

Typed, frozen representation of a crate's safety-relevant entities and the
predicate algebra their documented contracts are written in.

Modules:
    - ``schema``: Pydantic models for the front-end crate snapshot.
    - ``predicates``: Requirement atoms, requirement sets (DNF) and justifications.
    - ``logic``: Entailment and satisfiability over requirement atoms.
    - ``items``: The finalized Item Model dataclasses.
    - ``builder``: Snapshot to Item Model conversion and requirement validation.
"""
