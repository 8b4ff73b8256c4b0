import json
import logging
from typing import Iterable, Optional


logger = logging.getLogger(__name__)


def parse_tags(raw: Optional[str], transaction_id: Optional[int] = None) -> Optional[list[str]]:
    """Decode the JSON tags column into a list.

    Malformed or non-list content degrades to ``None`` with a warning rather
    than failing the read.
    """
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        logger.warning(
            "tags_parse_failed: transaction_id=%s error=%s", transaction_id, exc
        )
        return None
    if not isinstance(parsed, list):
        logger.warning(
            "tags_not_a_list: transaction_id=%s value=%r", transaction_id, parsed
        )
        return None
    return [tag for tag in parsed if isinstance(tag, str)]


def stringify_tags(tags: Optional[Iterable[str]]) -> Optional[str]:
    """Encode tags as given; an empty or missing list is stored as NULL."""
    if not tags:
        return None
    return json.dumps(list(tags), ensure_ascii=False)
