"""
Input Validators and Sanitizers

This module provides validation and sanitization functions for user inputs.
Post ids end up as keys in the aggregation buffer and as values compared
against backing store fields, so they are normalised before use.

Security Considerations:
- Length limits prevent memory abuse through the buffer
- Character whitelist keeps keys printable and loggable
"""

import re
from typing import Optional

MAX_POST_ID_LENGTH = 255

# Numeric ids, handles and Shopify GIDs (gid://shopify/Article/123)
POST_ID_PATTERN = re.compile(r'^[0-9A-Za-z_\-.:/]+$')


def sanitize_post_id(post_id) -> Optional[str]:
    """
    Sanitize and validate a post id.

    Args:
        post_id: The raw post id from the request (string or number)

    Returns:
        Sanitized post id if valid, None otherwise
    """
    if isinstance(post_id, bool) or post_id is None:
        return None

    if isinstance(post_id, int):
        post_id = str(post_id)

    if not isinstance(post_id, str):
        return None

    post_id = post_id.strip()
    if not post_id:
        return None

    if len(post_id) > MAX_POST_ID_LENGTH:
        return None

    if not POST_ID_PATTERN.match(post_id):
        return None

    return post_id
