import logging
from datetime import timedelta
from typing import Dict, List

from journeyflow.errors import InvalidGraphError
from journeyflow.models.journey import (
    TICK_EVENT_TYPE,
    ActionBlock,
    JourneyDefinition,
    WaitBlock,
)

logger = logging.getLogger(__name__)


def _block_refs(block) -> Dict[str, object]:
    if isinstance(block, ActionBlock):
        return {"next": block.next}
    if isinstance(block, WaitBlock):
        return {"on_match_next": block.on_match_next, "on_timeout_next": block.on_timeout_next}
    raise TypeError(f"Unsupported block type {type(block).__name__}")


def _resolve_ref(ref, names: List[str], problems: List[str], owner: str, field: str):
    if ref is None:
        return None
    if isinstance(ref, int):
        if 0 <= ref < len(names):
            return names[ref]
        problems.append(f"block {owner}: {field} index {ref} is out of range")
        return None
    if ref not in names:
        problems.append(f"block {owner}: {field} references unknown block {ref}")
        return None
    return ref


def _check_criteria(block: WaitBlock, problems: List[str]):
    for key, expected in block.match_criteria.items():
        if isinstance(expected, dict):
            if set(expected) != {"in"} or not isinstance(expected["in"], list):
                problems.append(f"block {block.name}: criteria {key} must be a value or {{\"in\": [...]}}")
        elif isinstance(expected, (list, tuple)):
            problems.append(f"block {block.name}: criteria {key} must be a value or {{\"in\": [...]}}")


def _check_wait(block: WaitBlock, problems: List[str]):
    if block.expected_event_type == TICK_EVENT_TYPE:
        problems.append(f"block {block.name}: {TICK_EVENT_TYPE} is reserved and cannot be awaited")
    if block.timeout_after <= timedelta(0):
        problems.append(f"block {block.name}: timeoutAfter must be positive")
    if block.reminder is not None:
        if block.reminder_after < timedelta(0):
            problems.append(f"block {block.name}: reminderAfter must not be negative")
        if block.reminder_after >= block.timeout_after:
            problems.append(f"block {block.name}: reminderAfter must be shorter than timeoutAfter")
    _check_criteria(block, problems)


def _detect_loops(blocks, problems: List[str]):
    edges = {block.name: [ref for ref in _block_refs(block).values() if ref is not None] for block in blocks}
    visiting, visited = set(), set()

    def visit(name):
        if name in visiting:
            problems.append(f"loop detected involving block {name}")
            return False
        if name in visited:
            return True
        visiting.add(name)
        for target in edges.get(name, []):
            if not visit(target):
                return False
        visiting.remove(name)
        visited.add(name)
        return True

    for name in edges:
        if not visit(name):
            break


def validate_journey(definition: JourneyDefinition) -> JourneyDefinition:
    """
    Check a definition before it is installed and return it with every block
    reference resolved to a block name.

    Raises InvalidGraphError listing every problem found.
    """
    problems: List[str] = []
    blocks = list(definition.blocks)
    if not blocks:
        problems.append("journey must contain at least one block")

    names = [block.name for block in blocks]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    for name in duplicates:
        problems.append(f"block name {name} is used more than once")

    resolved = []
    for block in blocks:
        refs = {
            field: _resolve_ref(ref, names, problems, block.name, field)
            for field, ref in _block_refs(block).items()
        }
        if isinstance(block, WaitBlock):
            _check_wait(block, problems)
        resolved.append(block.model_copy(update=refs))

    if not problems:
        _detect_loops(resolved, problems)

    if problems:
        logger.warning(f"[JOURNEY_VALIDATION] Journey {definition.name} rejected: {problems}")
        raise InvalidGraphError(definition.name, problems)

    logger.info(f"[JOURNEY_VALIDATION] Journey {definition.name} validated ({len(resolved)} blocks)")
    return definition.model_copy(update={"blocks": resolved})
