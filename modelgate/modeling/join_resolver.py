"""
Join-Path Resolver

Connects a primary table to every other table a query needs, using the
model's active relationships as an undirected graph.

Algorithm: fixed-point expansion. Start with joined = {primary}; on each
pass, any relationship with exactly one joined endpoint whose other
endpoint is needed gets that endpoint joined. The side already joined
supplies the left operand of the ON clause. Stops when a full pass adds
nothing. Only needed tables are ever joined, so a path through a table
the query does not need is not discovered.

Output order depends only on relationship order and the needed-set
insertion order, so the same inputs always yield the same joins.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .semantic_model import Model, ModelTable, Relationship

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinSpec:
    """One JOIN clause: bring `table_id` in, ON left_alias.left_column = right_alias.right_column."""
    table_id: str
    join_type: str
    left_alias: str
    left_column: str
    right_alias: str
    right_column: str
    relationship_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "tableId": self.table_id,
            "joinType": self.join_type,
            "leftAlias": self.left_alias,
            "leftColumn": self.left_column,
            "rightAlias": self.right_alias,
            "rightColumn": self.right_column,
            "relationshipId": self.relationship_id,
        }


@dataclass
class JoinPath:
    primary_table_id: str
    joins: List[JoinSpec]
    unreachable: List[str]

    @property
    def joined_table_ids(self) -> List[str]:
        return [self.primary_table_id] + [j.table_id for j in self.joins]


def choose_primary_table(model: Model, needed: Sequence[str]) -> Optional[ModelTable]:
    """
    Pick the FROM-clause anchor.

    The first isPrimary table (in sort order) that the query needs;
    otherwise the first needed table.
    """
    if not needed:
        return None
    needed_set = set(needed)
    for table in model.sorted_tables():
        if table.is_primary and table.id in needed_set:
            return table
    return model.get_table(needed[0])


def resolve_join_path(
    primary_table_id: str,
    needed: Iterable[str],
    relationships: Sequence[Relationship],
    aliases: Dict[str, str],
) -> JoinPath:
    """
    Resolve the joins connecting `primary_table_id` to the needed tables.

    Args:
        primary_table_id: FROM-clause table
        needed: Table ids the query references (order is preserved)
        relationships: Active relationships of the model
        aliases: table id -> alias

    Returns:
        JoinPath with joins in resolution order and the needed table ids
        that no relationship reaches
    """
    needed_order = list(dict.fromkeys(needed))
    needed_set = set(needed_order)
    joined = {primary_table_id}
    joins: List[JoinSpec] = []

    changed = True
    while changed:
        changed = False
        for rel in relationships:
            if rel.left_table_id not in aliases or rel.right_table_id not in aliases:
                continue
            left_in = rel.left_table_id in joined
            right_in = rel.right_table_id in joined

            if left_in and not right_in and rel.right_table_id in needed_set:
                joins.append(JoinSpec(
                    table_id=rel.right_table_id,
                    join_type=rel.join_type,
                    left_alias=aliases[rel.left_table_id],
                    left_column=rel.left_column,
                    right_alias=aliases[rel.right_table_id],
                    right_column=rel.right_column,
                    relationship_id=rel.id,
                ))
                joined.add(rel.right_table_id)
                changed = True
            elif right_in and not left_in and rel.left_table_id in needed_set:
                joins.append(JoinSpec(
                    table_id=rel.left_table_id,
                    join_type=rel.join_type,
                    left_alias=aliases[rel.right_table_id],
                    left_column=rel.right_column,
                    right_alias=aliases[rel.left_table_id],
                    right_column=rel.left_column,
                    relationship_id=rel.id,
                ))
                joined.add(rel.left_table_id)
                changed = True

    unreachable = [t for t in needed_order if t not in joined]
    if unreachable:
        logger.debug(f"Tables unreachable from {primary_table_id}: {unreachable}")

    return JoinPath(primary_table_id=primary_table_id, joins=joins, unreachable=unreachable)
