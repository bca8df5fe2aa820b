"""Trust hierarchy reconstruction from a flat certificate list."""

import logging
from collections.abc import Iterable, Iterator

from .models import CertClass, CertificateRecord, HierarchyNode

logger = logging.getLogger(__name__)

UNATTACHED_LABEL = "Unattached"


def dedupe_by_fingerprint(records: Iterable[CertificateRecord]) -> list[CertificateRecord]:
    """Drop repeated fingerprints, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[CertificateRecord] = []
    for record in records:
        if record.fingerprint in seen:
            continue
        seen.add(record.fingerprint)
        unique.append(record)
    return unique


def _would_cycle(
    child: CertificateRecord,
    parent: CertificateRecord,
    parents: dict[str, CertificateRecord],
) -> bool:
    current: CertificateRecord | None = parent
    visited: set[str] = set()
    while current is not None:
        if current.fingerprint == child.fingerprint:
            return True
        if current.fingerprint in visited:
            return True
        visited.add(current.fingerprint)
        current = parents.get(current.fingerprint)
    return False


def build_hierarchy(records: Iterable[CertificateRecord]) -> list[HierarchyNode]:
    """Reconstruct the trust forest.

    CAs are indexed by Subject Key Identifier (first CA in input order wins).
    Intermediates and Standard certificates attach to the CA whose SKI equals
    their Authority Key Identifier. Standard certificates without an AKI fall
    back to the first CA whose subject equals their issuer. Intermediates with
    no usable parent become roots; Standard certificates with none are
    grouped under a single "Unattached" node placed last.

    Args:
        records: Certificates in discovery order (duplicates allowed)

    Returns:
        Root nodes in input order, followed by "Unattached" if needed
    """
    unique = dedupe_by_fingerprint(records)
    cas = [record for record in unique if record.is_ca]
    intermediates = [r for r in unique if r.cert_class is CertClass.INTERMEDIATE_CA]
    leaves = [r for r in unique if r.cert_class is CertClass.STANDARD]

    ski_index: dict[str, CertificateRecord] = {}
    for ca in cas:
        if ca.subject_key_id and ca.subject_key_id not in ski_index:
            ski_index[ca.subject_key_id] = ca

    nodes = {record.fingerprint: HierarchyNode.for_record(record) for record in unique}
    parents: dict[str, CertificateRecord] = {}

    for intermediate in intermediates:
        parent = ski_index.get(intermediate.authority_key_id or "")
        if parent is None or parent.fingerprint == intermediate.fingerprint:
            continue
        if _would_cycle(intermediate, parent, parents):
            logger.warning(
                "Ignoring issuer link that would form a cycle for %s",
                intermediate.name,
                extra={"fingerprint": intermediate.fingerprint},
            )
            continue
        parents[intermediate.fingerprint] = parent

    unattached: HierarchyNode | None = None
    for leaf in leaves:
        if leaf.authority_key_id:
            parent = ski_index.get(leaf.authority_key_id)
        else:
            parent = next((ca for ca in cas if ca.subject == leaf.issuer), None)
        if parent is not None:
            parents[leaf.fingerprint] = parent
            continue
        if unattached is None:
            unattached = HierarchyNode.group(UNATTACHED_LABEL)
        unattached.children.append(nodes[leaf.fingerprint])

    roots: list[HierarchyNode] = []
    for record in unique:
        parent = parents.get(record.fingerprint)
        if parent is not None:
            nodes[parent.fingerprint].children.append(nodes[record.fingerprint])
        elif record.is_ca:
            roots.append(nodes[record.fingerprint])

    if unattached is not None:
        roots.append(unattached)
    return roots


def iter_nodes(roots: Iterable[HierarchyNode]) -> Iterator[tuple[HierarchyNode, int]]:
    """Walk every node of the forest depth-first as (node, depth)."""
    for root in roots:
        yield from root.walk()
