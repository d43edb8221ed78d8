"""Sources must stay importable on every Python version the package supports."""

import sys
import tokenize
from pathlib import Path

import pytest

SRC = Path(__file__).resolve().parent.parent / "src"


def _delimiter(token_text: str) -> str:
    body = token_text.lstrip("rRbBfFuU")
    return body[:3] if body[:3] in ('"""', "'''") else body[:1]


def _nested_same_quotes(path: Path):
    """Strings inside f-string fields reusing the enclosing quote (3.12+ only)."""
    enclosing = []
    with path.open("rb") as source:
        for token in tokenize.tokenize(source.readline):
            if token.type in (tokenize.STRING, tokenize.FSTRING_START) and enclosing:
                if _delimiter(token.string).startswith(enclosing[-1]):
                    yield token.start[0]
            if token.type == tokenize.FSTRING_START:
                enclosing.append(_delimiter(token.string))
            elif token.type == tokenize.FSTRING_END:
                enclosing.pop()


@pytest.mark.skipif(sys.version_info < (3, 12), reason="f-string tokens are only emitted from 3.12")
def test_no_nested_same_quote_fstrings():
    offenders = [
        f"{path.relative_to(SRC)}:{line}"
        for path in sorted(SRC.rglob("*.py"))
        for line in _nested_same_quotes(path)
    ]
    assert offenders == []
