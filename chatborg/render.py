"""
Model output → Telegram HTML, and splitting of long replies.
"""

from telethon.extensions import html as telethon_html
from telethon.extensions import markdown as telethon_markdown

from chatborg.constants import TELEGRAM_MESSAGE_LIMIT


def to_html(text: str) -> str:
    """
    Converts Telegram-flavoured markdown (`**bold**`, `__italic__`,
    `~~strike~~`, `` `code` ``, ```` ```pre``` ````, `[text](url)`) into HTML.

    Telethon parses the markdown into message entities and renders them back
    as HTML, so the result can be split before sending.
    """
    plain, entities = telethon_markdown.parse(text)
    return telethon_html.unparse(plain, entities)


def _cut_index(text: str, limit: int) -> int:
    head = text[:limit]
    cut = head.rfind("<pre>")
    if cut <= 0:
        cut = head.rfind("\n")
    if cut <= 0:
        cut = limit
    return cut


def split_html(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> list[str]:
    """
    Splits `text` into chunks of at most `limit` code points.

    A chunk ends right before the last `<pre>` that fits, else before the
    last newline, else at `limit`. Joining the chunks gives back `text`.
    """
    chunks = []
    while len(text) > limit:
        cut = _cut_index(text, limit)
        chunks.append(text[:cut])
        text = text[cut:]
    if text:
        chunks.append(text)
    return chunks
