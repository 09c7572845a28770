from __future__ import annotations

from typing import Iterable, List

from dhis2_aggregate.errors import ExportValidationError
from dhis2_aggregate.sources.models import TargetDefinition


def is_relevant_definition(target: TargetDefinition, data_set: str) -> bool:
    dhis = target.dhis
    if dhis is None or not dhis.data_element:
        return False
    return not dhis.data_set or dhis.data_set == data_set


def resolve_target_definitions(items: Iterable[TargetDefinition], data_set: str) -> List[TargetDefinition]:
    """Keep target definitions exported with `data_set`.

    A definition qualifies when its dhis block names a dataElement and either
    names no dataSet or names this one. Configured order is preserved.

    Raises ExportValidationError when nothing qualifies.
    """

    relevant = [target for target in items if is_relevant_definition(target, data_set)]
    if not relevant:
        raise ExportValidationError(f'dataSet "{data_set}" has no dataElements')
    return relevant
