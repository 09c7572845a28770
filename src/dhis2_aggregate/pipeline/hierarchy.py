from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List

from dhis2_aggregate.sources.models import Contact, OrgUnitMap

logger = logging.getLogger(__name__)


def own_org_units(contact: Contact, data_set: str) -> List[str]:
    """Org units a contact claims itself for `data_set` (deduplicated, in config order)."""

    units: List[str] = []
    for dhis in contact.dhis:
        if dhis.org_unit and dhis.matches(data_set) and dhis.org_unit not in units:
            units.append(dhis.org_unit)
    return units


def iter_ancestor_ids(contact: Contact, index: Dict[str, Contact]) -> Iterator[str]:
    """Yield ancestor ids, nearest first.

    Follows the contact's embedded lineage; when that lineage ends at a contact
    present in `index`, continues through the indexed contact's own lineage.
    Stops at the root or on the first repeated id.
    """

    visited = {contact.id}
    current = contact
    while True:
        extended = False
        for ancestor_id in current.lineage:
            if ancestor_id in visited:
                return
            visited.add(ancestor_id)
            yield ancestor_id

        if current.lineage:
            last = index.get(current.lineage[-1])
            if last is not None and last.lineage:
                current = last
                extended = True
        if not extended:
            return


def map_contact_org_units(
    data_set: str,
    owners: Iterable[Contact],
    contacts_with_org_units: Iterable[Contact],
) -> OrgUnitMap:
    """Map contact ids to the org units their report data is attributed to.

    1) every in-scope contact gets the org units of its own dhis entries that
       match `data_set`
    2) every owner additionally gets the units of each ancestor that has
       units from step 1

    Step 2 reads only step-1 results, so the outcome does not depend on the
    order owners or contacts are given in.
    """

    owners = list(owners)
    in_scope = list(contacts_with_org_units)

    own: OrgUnitMap = {}
    for contact in in_scope:
        units = own_org_units(contact, data_set)
        if not units:
            continue
        existing = own.setdefault(contact.id, [])
        existing.extend(u for u in units if u not in existing)

    index: Dict[str, Contact] = {c.id: c for c in in_scope}
    index.update((c.id, c) for c in owners)

    result: OrgUnitMap = {contact_id: list(units) for contact_id, units in own.items()}
    for owner in owners:
        inherited = [ancestor_id for ancestor_id in iter_ancestor_ids(owner, index) if ancestor_id in own]
        if not inherited:
            continue

        units = result.setdefault(owner.id, [])
        for ancestor_id in inherited:
            units.extend(u for u in own[ancestor_id] if u not in units)

    logger.debug(
        "org unit map for %s: %d contacts, %d distinct units",
        data_set,
        len(result),
        len({u for units in result.values() for u in units}),
    )
    return result
