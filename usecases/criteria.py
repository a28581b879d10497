# usecases/criteria.py - Compiles optional attribute filters into a catalog predicate
from typing import List

from domain.models import Clause, ClauseOp, FilterCriteria, Predicate


def compile_criteria(criteria: FilterCriteria) -> Predicate:
    """
    Build the conjunction of one clause per present field.

    Keywords match when any requested keyword is present, tags only when all
    requested tags are present. Absent fields add nothing, so criteria with no
    field at all compile to the identity predicate.
    """
    clauses: List[Clause] = []

    if criteria.category is not None:
        clauses.append(Clause("category", ClauseOp.EQUALS, criteria.category))
    if criteria.postal_code is not None:
        clauses.append(Clause("postal_code", ClauseOp.EQUALS, criteria.postal_code))
    if criteria.keywords:
        clauses.append(Clause("keywords", ClauseOp.ANY_OF, frozenset(criteria.keywords)))
    if criteria.price_range is not None:
        clauses.append(Clause("price_range", ClauseOp.EQUALS, criteria.price_range))
    if criteria.required_tags:
        clauses.append(Clause("filters", ClauseOp.ALL_OF, frozenset(criteria.required_tags)))

    return Predicate(tuple(clauses))
