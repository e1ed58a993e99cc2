import re

from txflow.exception import TxflowError

DOLLAR_KEYWORD = re.compile(r"(\$([a-z][a-z0-9_]*))")
DOLLAR_POSITIONAL = re.compile(r"(\$(\d+))")


def convert_sql_params(
    query: str, positional_sub: str = r"%s", keyword_sub: str = r"%(\2)s"
) -> str:
    """Rewrite `$name` or `$1` placeholders into a driver paramstyle.

    A single statement may use keyword or positional placeholders, but
    not both.
    """
    styles = 0
    if DOLLAR_KEYWORD.search(query):
        styles += 1
        query = DOLLAR_KEYWORD.sub(keyword_sub, query)
    if DOLLAR_POSITIONAL.search(query):
        styles += 1
        query = DOLLAR_POSITIONAL.sub(positional_sub, query)
    if styles > 1:
        raise TxflowError(
            "Cannot mix keyword and positional placeholders in one query"
        )
    return query
