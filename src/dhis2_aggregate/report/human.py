from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Set

from dhis2_aggregate.sources.models import (
    Contact,
    DataSetConfig,
    DataValue,
    ExportResult,
    TargetDefinition,
)

logger = logging.getLogger(__name__)


def make_human_readable(
    result: ExportResult,
    data_set_config: DataSetConfig,
    definitions: Iterable[TargetDefinition],
    contacts: Iterable[Contact],
) -> ExportResult:
    """Relabel a machine-mode export for people.

    - dataSet becomes the dataset label
    - orgUnit becomes the name of the contact claiming that unit (last claim wins)
    - dataElement becomes the target id it was configured on

    Returns a new result; values are untouched. Codes without a match (or a
    matching contact without a name) are kept as-is and logged.
    """

    contact_by_org_unit: Dict[str, Contact] = {}
    for contact in contacts:
        for dhis in contact.dhis:
            if dhis.org_unit:
                contact_by_org_unit[dhis.org_unit] = contact

    target_id_by_element: Dict[str, str] = {}
    for target in definitions:
        if target.dhis is not None and target.dhis.data_element:
            target_id_by_element[target.dhis.data_element] = target.id

    unresolved_units: Set[str] = set()
    unresolved_elements: Set[str] = set()
    data_values: List[DataValue] = []
    for data_value in result.data_values:
        contact = contact_by_org_unit.get(data_value.org_unit)
        if contact is not None and contact.name:
            org_unit = contact.name
        else:
            org_unit = data_value.org_unit
            unresolved_units.add(data_value.org_unit)

        data_element = target_id_by_element.get(data_value.data_element)
        if data_element is None:
            data_element = data_value.data_element
            unresolved_elements.add(data_value.data_element)

        data_values.append(data_value.model_copy(update={"org_unit": org_unit, "data_element": data_element}))

    if unresolved_units:
        logger.warning("no named contact for org units %s; codes kept", sorted(unresolved_units))
    if unresolved_elements:
        logger.warning("no target for data elements %s; codes kept", sorted(unresolved_elements))

    return result.model_copy(
        update={
            "data_set": data_set_config.label or result.data_set,
            "data_values": data_values,
        }
    )
