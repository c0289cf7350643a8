"""
Identity remapping - atomic rename of a node across rows, styles and selection.

A node's id is its name, and that name is also baked into the keys of both
style tables. Renaming therefore touches four pieces of state; all of them
are derived here from one input snapshot and returned as one new snapshot,
so no observer ever sees a half-migrated graph.
"""

import logging

from .graph import build_graph
from .models import (
    EdgeRow,
    LinkStyle,
    NodeStyle,
    Selection,
    Snapshot,
    check_node_id,
    make_link_key,
    split_link_key,
)

logger = logging.getLogger(__name__)


def _remap(value: str, old_id: str, new_id: str) -> str:
    return new_id if value == old_id else value


def rename_rows(rows: tuple[EdgeRow, ...], old_id: str, new_id: str) -> tuple[EdgeRow, ...]:
    """Replace old_id by new_id in every row's source and target."""
    renamed = []
    for row in rows:
        if row.source == old_id or row.target == old_id:
            row = row.model_copy(update={
                "source": _remap(row.source, old_id, new_id),
                "target": _remap(row.target, old_id, new_id),
            })
        renamed.append(row)
    return tuple(renamed)


def rename_node_styles(styles: dict[str, NodeStyle], old_id: str, new_id: str) -> dict[str, NodeStyle]:
    """Move the old_id entry to new_id, overwriting any prior new_id entry."""
    if old_id not in styles:
        return styles
    renamed = dict(styles)
    renamed[new_id] = renamed.pop(old_id)
    return renamed


def rename_link_styles(styles: dict[str, LinkStyle], old_id: str, new_id: str) -> dict[str, LinkStyle]:
    """
    Re-key every link style whose endpoints reference old_id.

    If two old keys map to the same new key (e.g. renaming "A" to "B" when
    both "A→C" and "B→C" are styled), the entry processed later in table
    order wins; exactly one entry survives per new key.
    """
    renamed: dict[str, LinkStyle] = {}
    for key, style in styles.items():
        source, target = split_link_key(key)
        new_key = make_link_key(_remap(source, old_id, new_id), _remap(target, old_id, new_id))
        if new_key in renamed and new_key != key:
            logger.debug("Link style %r overwrites %r after rename", key, new_key)
        renamed[new_key] = style
    return renamed


def rename_selection(selection: Selection, old_id: str, new_id: str) -> Selection:
    """Keep the inspector attached to the renamed entity."""
    if selection.node_id == old_id:
        return Selection.of_node(new_id)
    if selection.link is not None and old_id in selection.link:
        source, target = selection.link
        return Selection.of_link(_remap(source, old_id, new_id), _remap(target, old_id, new_id))
    return selection


def rename_node(snapshot: Snapshot, old_id: str, new_id_raw: str) -> Snapshot:
    """
    Rename a node everywhere it is referenced.

    The new id is trimmed; an empty or unchanged id is a silent no-op and
    the input snapshot is returned as-is. An id containing the link-key
    separator raises ValueError.

    Args:
        snapshot: Current editor state (not modified)
        old_id: Id being renamed
        new_id_raw: New id as typed by the user

    Returns:
        A new snapshot with rows, node styles, link styles and selection
        migrated together
    """
    new_id = (new_id_raw or "").strip()
    if not new_id or new_id == old_id:
        return snapshot
    check_node_id(new_id)

    logger.debug("Renaming node %r -> %r", old_id, new_id)

    return Snapshot(
        rows=rename_rows(snapshot.rows, old_id, new_id),
        node_styles=rename_node_styles(snapshot.node_styles, old_id, new_id),
        link_styles=rename_link_styles(snapshot.link_styles, old_id, new_id),
        selection=rename_selection(snapshot.selection, old_id, new_id),
    )


def prune_styles(snapshot: Snapshot) -> Snapshot:
    """
    Drop style entries and selection no longer derivable from the rows.

    Applied after row edits so that deleting a row (or editing it out of
    the diagram) never leaves orphaned style entries behind.
    """
    graph = build_graph(snapshot.rows)
    node_ids = set(graph.node_ids)
    link_keys = {make_link_key(l.source, l.target) for l in graph.links}

    node_styles = {k: v for k, v in snapshot.node_styles.items() if k in node_ids}
    link_styles = {k: v for k, v in snapshot.link_styles.items() if k in link_keys}

    selection = snapshot.selection
    if selection.node_id is not None and selection.node_id not in node_ids:
        selection = Selection()
    elif selection.link is not None and make_link_key(*selection.link) not in link_keys:
        selection = Selection()

    if (len(node_styles) == len(snapshot.node_styles)
            and len(link_styles) == len(snapshot.link_styles)
            and selection is snapshot.selection):
        return snapshot

    dropped = (len(snapshot.node_styles) - len(node_styles)) + (len(snapshot.link_styles) - len(link_styles))
    if dropped:
        logger.debug("Dropped %d orphaned style entries", dropped)

    return snapshot.model_copy(update={
        "node_styles": node_styles,
        "link_styles": link_styles,
        "selection": selection,
    })
