"""
Context compression helpers for chatroute.

Applied by the caller when a fallback decision comes back with
``should_compress_first=True``.  Messages are chat-style mappings with
``role`` and ``content`` keys; inputs are never mutated.
"""

import re
from typing import Any, Dict, List

Message = Dict[str, Any]

_LOW_PRIORITY = re.compile(r'^(hi|hello|hey|thanks|ok|okay|great|nice|cool)\s*[.!]?$', re.IGNORECASE)


def drop_old_messages(messages: List[Message], keep_count: int = 5) -> List[Message]:
    """Keep the first system message plus the last *keep_count* others."""
    if len(messages) <= keep_count:
        return list(messages)
    system = next((m for m in messages if m.get('role') == 'system'), None)
    others = [m for m in messages if m.get('role') != 'system']
    recent = others[-keep_count:] if keep_count > 0 else []
    return [system] + recent if system is not None else recent


def truncate_long_messages(messages: List[Message], max_length: int = 500) -> List[Message]:
    """Cut message bodies longer than *max_length* and append ``...``."""
    truncated = []
    for m in messages:
        content = m.get('content') or ''
        if len(content) > max_length:
            m = {**m, 'content': content[:max_length] + '...'}
        else:
            m = dict(m)
        truncated.append(m)
    return truncated


def remove_low_priority(messages: List[Message]) -> List[Message]:
    """Drop bare greetings and acknowledgements; system messages always stay."""
    return [
        m for m in messages
        if m.get('role') == 'system' or not _LOW_PRIORITY.match((m.get('content') or '').strip())
    ]


COMPRESSION_STRATEGIES = {
    'drop_old_messages': drop_old_messages,
    'truncate_long_messages': truncate_long_messages,
    'remove_low_priority': remove_low_priority,
}
