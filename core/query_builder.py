# ABOUTME: Composable SQL predicate/ordering builder for forum post listings and thread reads
# ABOUTME: Tagged expression nodes compile to psycopg.sql objects plus positional parameters

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from psycopg import sql

SOFT_DELETED_STATE = "(deleted)"

NODE_TYPE_ALL = "all"
NODE_TYPES = ("question", "answer", "comment")
THREAD_CHILD_TYPES = ("answer", "comment")

DEFAULT_SORT = "date_desc"

NODE_TABLE = "forum_node"
USER_TABLE = "forum_user"

# Table aliases used by every generated query
NODE_ALIAS = "n"
COUNTS_ALIAS = "c"

# LIMIT and OFFSET are bigint in PostgreSQL; larger values are clamped so huge pages come back empty
MAX_ROW_BOUND = 2**63 - 1


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so the term matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ============================================================================
# SCALAR EXPRESSIONS
# ============================================================================


class Expression:
    """Base class for scalar SQL expressions."""

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        raise NotImplementedError


@dataclass(frozen=True)
class Column(Expression):
    table: str
    name: str

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        return sql.Identifier(self.table, self.name), []


@dataclass(frozen=True)
class Sum(Expression):
    left: Expression
    right: Expression

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        left_sql, left_params = self.left.compile()
        right_sql, right_params = self.right.compile()
        return sql.SQL("({} + {})").format(left_sql, right_sql), left_params + right_params


@dataclass(frozen=True)
class Precedence(Expression):
    """Rank a column by position in a list of values (1-based, unmatched last)."""

    column: Column
    values: tuple[str, ...]

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        column_sql, params = self.column.compile()
        branches = [
            sql.SQL("WHEN {} THEN {}").format(sql.Placeholder(), sql.Literal(rank))
            for rank, _ in enumerate(self.values, start=1)
        ]
        composed = sql.SQL("CASE {} {} ELSE {} END").format(
            column_sql, sql.SQL(" ").join(branches), sql.Literal(len(self.values) + 1)
        )
        return composed, params + list(self.values)


ID = Column(NODE_ALIAS, "id")
TITLE = Column(NODE_ALIAS, "title")
BODY = Column(NODE_ALIAS, "body")
TAGNAMES = Column(NODE_ALIAS, "tagnames")
NODE_TYPE = Column(NODE_ALIAS, "node_type")
ADDED_AT = Column(NODE_ALIAS, "added_at")
SCORE = Column(NODE_ALIAS, "score")
PARENT_ID = Column(NODE_ALIAS, "parent_id")
STATE = Column(NODE_ALIAS, "state_string")
ANSWER_COUNT = Column(COUNTS_ALIAS, "answer_count")
COMMENT_COUNT = Column(COUNTS_ALIAS, "comment_count")
INTERACTIONS = Sum(ANSWER_COUNT, COMMENT_COUNT)


# ============================================================================
# PREDICATES
# ============================================================================


class Predicate:
    """Base class for boolean SQL expressions."""

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        raise NotImplementedError

    def __and__(self, other: "Predicate") -> "Predicate":
        return all_of(self, other)

    def __or__(self, other: "Predicate") -> "Predicate":
        return any_of(self, other)


@dataclass(frozen=True)
class Always(Predicate):
    value: bool = True

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        return sql.SQL("TRUE" if self.value else "FALSE"), []


@dataclass(frozen=True)
class Comparison(Predicate):
    column: Column
    operator: str
    value: Any

    OPERATORS = frozenset({"=", "<>", "<", "<=", ">", ">="})

    def __post_init__(self):
        if self.operator not in self.OPERATORS:
            raise ValueError(f"Unsupported comparison operator: {self.operator!r}")

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        column_sql, params = self.column.compile()
        composed = sql.SQL("{} {} {}").format(column_sql, sql.SQL(self.operator), sql.Placeholder())
        return composed, params + [self.value]


@dataclass(frozen=True)
class IsDistinctFrom(Predicate):
    """NULL-safe inequality; a NULL column is distinct from any value."""

    column: Column
    value: Any

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        column_sql, params = self.column.compile()
        return sql.SQL("{} IS DISTINCT FROM {}").format(column_sql, sql.Placeholder()), params + [self.value]


@dataclass(frozen=True)
class AnyOf(Predicate):
    column: Column
    values: tuple[Any, ...]

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        if not self.values:
            return Always(False).compile()
        column_sql, params = self.column.compile()
        return sql.SQL("{} = ANY({})").format(column_sql, sql.Placeholder()), params + [list(self.values)]


@dataclass(frozen=True)
class ILike(Predicate):
    """Case-insensitive LIKE. The pattern is bound as a parameter."""

    column: Column
    pattern: str

    @classmethod
    def contains(cls, column: Column, text: str) -> "ILike":
        return cls(column, f"%{escape_like(text)}%")

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        column_sql, params = self.column.compile()
        composed = sql.SQL("{} ILIKE {} ESCAPE {}").format(column_sql, sql.Placeholder(), sql.Literal("\\"))
        return composed, params + [self.pattern]


@dataclass(frozen=True)
class HasToken(Predicate):
    """Whole-token match inside a space/comma delimited list column."""

    column: Column
    token: str

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        column_sql, params = self.column.compile()
        composed = sql.SQL("LOWER({}) = ANY(regexp_split_to_array(LOWER(COALESCE({}, {})), {}))").format(
            sql.Placeholder(), column_sql, sql.Literal(""), sql.Literal(r"[\s,]+")
        )
        return composed, [self.token] + params


@dataclass(frozen=True)
class _Junction(Predicate):
    operands: tuple[Predicate, ...] = field(default_factory=tuple)

    joiner = " AND "
    empty_value = True

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        if not self.operands:
            return Always(self.empty_value).compile()
        if len(self.operands) == 1:
            return self.operands[0].compile()

        parts = []
        params: list[Any] = []
        for operand in self.operands:
            operand_sql, operand_params = operand.compile()
            parts.append(operand_sql)
            params.extend(operand_params)
        return sql.SQL("({})").format(sql.SQL(self.joiner).join(parts)), params


class And(_Junction):
    joiner = " AND "
    empty_value = True


class Or(_Junction):
    joiner = " OR "
    empty_value = False


def _flatten(kind: type, predicates: Iterable[Predicate]) -> list[Predicate]:
    flat = []
    for predicate in predicates:
        if type(predicate) is kind:
            flat.extend(predicate.operands)
        else:
            flat.append(predicate)
    return flat


def all_of(*predicates: Predicate) -> Predicate:
    """AND together predicates, dropping TRUE operands and short-circuiting on FALSE."""
    operands = []
    for predicate in _flatten(And, predicates):
        if isinstance(predicate, Always):
            if not predicate.value:
                return Always(False)
            continue
        operands.append(predicate)
    return And(tuple(operands)) if len(operands) != 1 else operands[0]


def any_of(*predicates: Predicate) -> Predicate:
    """OR together predicates, dropping FALSE operands and short-circuiting on TRUE."""
    operands = []
    for predicate in _flatten(Or, predicates):
        if isinstance(predicate, Always):
            if predicate.value:
                return Always(True)
            continue
        operands.append(predicate)
    return Or(tuple(operands)) if len(operands) != 1 else operands[0]


def not_deleted() -> Predicate:
    return IsDistinctFrom(STATE, SOFT_DELETED_STATE)


# ============================================================================
# ORDERING
# ============================================================================


@dataclass(frozen=True)
class OrderKey:
    expression: Expression
    descending: bool = False

    def compile(self) -> tuple[sql.Composable, list[Any]]:
        expression_sql, params = self.expression.compile()
        direction = sql.SQL("DESC" if self.descending else "ASC")
        return sql.SQL("{} {}").format(expression_sql, direction), params


SORT_ORDERS: dict[str, tuple[OrderKey, ...]] = {
    "date_desc": (OrderKey(ADDED_AT, descending=True),),
    "date_asc": (OrderKey(ADDED_AT),),
    "score_desc": (OrderKey(SCORE, descending=True),),
    "score_asc": (OrderKey(SCORE),),
    "interactions_desc": (OrderKey(INTERACTIONS, descending=True),),
    "interactions_asc": (OrderKey(INTERACTIONS),),
}

# Appended to every listing sort so equal keys still page deterministically
TIE_BREAKERS = (OrderKey(ADDED_AT, descending=True), OrderKey(ID, descending=True))

THREAD_ORDER = (
    OrderKey(Precedence(NODE_TYPE, THREAD_CHILD_TYPES)),
    OrderKey(SCORE, descending=True),
    OrderKey(ADDED_AT),
    OrderKey(ID),
)

REPLY_ORDER = (OrderKey(ADDED_AT), OrderKey(ID))


def normalize_sort(sort_by: str | None) -> str:
    return sort_by if sort_by in SORT_ORDERS else DEFAULT_SORT


def build_ordering(sort_by: str | None) -> tuple[OrderKey, ...]:
    """Order keys for a listing sort, with the timestamp/id tie-breakers appended."""
    keys = list(SORT_ORDERS[normalize_sort(sort_by)])
    used = {key.expression for key in keys}
    keys.extend(key for key in TIE_BREAKERS if key.expression not in used)
    return tuple(keys)


def compile_ordering(keys: Iterable[OrderKey]) -> tuple[sql.Composable, list[Any]]:
    parts = []
    params: list[Any] = []
    for key in keys:
        key_sql, key_params = key.compile()
        parts.append(key_sql)
        params.extend(key_params)
    return sql.SQL(", ").join(parts), params


# ============================================================================
# LISTING REQUEST
# ============================================================================


@dataclass(frozen=True)
class PostQuery:
    """A sanitized listing request: pagination, filters and sort."""

    page: int = 1
    limit: int = 10
    search: str = ""
    node_type: str = NODE_TYPE_ALL
    sort_by: str = DEFAULT_SORT
    tags: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "node_type", self.node_type or NODE_TYPE_ALL)
        object.__setattr__(self, "sort_by", normalize_sort(self.sort_by))
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def build_filter(query: PostQuery) -> Predicate:
    """
    Build the WHERE predicate shared by the page query and the count query.

    Soft-deleted rows are always excluded. nodeType 'all' adds no type
    restriction; any other value is matched exactly. An empty search adds
    no search restriction.
    """
    predicates = [not_deleted()]

    if query.node_type != NODE_TYPE_ALL:
        predicates.append(Comparison(NODE_TYPE, "=", query.node_type))

    if query.search:
        predicates.append(any_of(*(ILike.contains(column, query.search) for column in (TITLE, BODY, TAGNAMES))))

    predicates.extend(HasToken(TAGNAMES, tag) for tag in query.tags)

    return all_of(*predicates)


# ============================================================================
# STATEMENTS
# ============================================================================

POST_SELECT = """
    SELECT
        n.id,
        CASE
            WHEN n.node_type = 'question' THEN n.title
            ELSE INITCAP(n.node_type) || ' to: ' || COALESCE(p.title, 'Deleted Post')
        END AS title,
        n.body,
        n.tagnames,
        n.node_type,
        n.added_at,
        n.score,
        n.parent_id,
        n.author_id,
        u.real_name AS author_name,
        c.answer_count,
        c.comment_count
    FROM {nodes} AS n
    LEFT JOIN {users} AS u ON u.user_ptr_id = n.author_id
    LEFT JOIN {nodes} AS p ON p.id = n.parent_id AND p.state_string IS DISTINCT FROM {deleted}
    CROSS JOIN LATERAL (
        SELECT
            COUNT(*) FILTER (WHERE k.node_type = 'answer') AS answer_count,
            COUNT(*) FILTER (WHERE k.node_type = 'comment') AS comment_count
        FROM {nodes} AS k
        WHERE k.parent_id = n.id AND k.state_string IS DISTINCT FROM {deleted}
    ) AS c
    WHERE {where}
"""


@dataclass(frozen=True)
class Statement:
    query: sql.Composable
    params: tuple[Any, ...]


@dataclass(frozen=True)
class ListingStatements:
    page: Statement
    count: Statement


def build_post_select(
    where: Predicate,
    order_keys: Iterable[OrderKey] = (),
    limit: int | None = None,
    offset: int | None = None,
    node_table: str = NODE_TABLE,
    user_table: str = USER_TABLE,
) -> Statement:
    """
    Build a post SELECT with synthesized titles, author names and child counts.

    Args:
        where: Row predicate over the 'n' alias
        order_keys: ORDER BY keys (none = unordered)
        limit: LIMIT value (None = no limit)
        offset: OFFSET value, only used together with limit
            (both are clamped to MAX_ROW_BOUND)
        node_table: Name of the posts table or view
        user_table: Name of the users table or view

    Returns:
        Statement with the composed query and its positional parameters
    """
    where_sql, params = where.compile()
    query = sql.SQL(POST_SELECT).format(
        nodes=sql.Identifier(node_table),
        users=sql.Identifier(user_table),
        deleted=sql.Literal(SOFT_DELETED_STATE),
        where=where_sql,
    )

    keys = tuple(order_keys)
    if keys:
        order_sql, order_params = compile_ordering(keys)
        query = sql.SQL("{} ORDER BY {}").format(query, order_sql)
        params = params + order_params

    if limit is not None:
        query = sql.SQL("{} LIMIT {} OFFSET {}").format(query, sql.Placeholder(), sql.Placeholder())
        params = params + [min(limit, MAX_ROW_BOUND), min(offset or 0, MAX_ROW_BOUND)]

    return Statement(query, tuple(params))


def build_count(where: Predicate, node_table: str = NODE_TABLE) -> Statement:
    where_sql, params = where.compile()
    query = sql.SQL("SELECT COUNT(*) AS total FROM {} AS n WHERE {}").format(sql.Identifier(node_table), where_sql)
    return Statement(query, tuple(params))


def build_listing_statements(
    query: PostQuery, node_table: str = NODE_TABLE, user_table: str = USER_TABLE
) -> ListingStatements:
    """Page and count statements sharing one filter predicate."""
    where = build_filter(query)
    page = build_post_select(
        where,
        build_ordering(query.sort_by),
        limit=query.limit,
        offset=query.offset,
        node_table=node_table,
        user_table=user_table,
    )
    return ListingStatements(page=page, count=build_count(where, node_table))


def build_question_lookup(post_id: int, node_table: str = NODE_TABLE, user_table: str = USER_TABLE) -> Statement:
    where = all_of(Comparison(ID, "=", post_id), Comparison(NODE_TYPE, "=", "question"), not_deleted())
    return build_post_select(where, node_table=node_table, user_table=user_table)


def build_thread_children(post_id: int, node_table: str = NODE_TABLE, user_table: str = USER_TABLE) -> Statement:
    where = all_of(Comparison(PARENT_ID, "=", post_id), AnyOf(NODE_TYPE, THREAD_CHILD_TYPES), not_deleted())
    return build_post_select(where, THREAD_ORDER, node_table=node_table, user_table=user_table)


def build_replies(parent_ids: Iterable[int], node_table: str = NODE_TABLE, user_table: str = USER_TABLE) -> Statement:
    where = all_of(AnyOf(PARENT_ID, tuple(parent_ids)), Comparison(NODE_TYPE, "=", "comment"), not_deleted())
    return build_post_select(where, REPLY_ORDER, node_table=node_table, user_table=user_table)


def build_user_lookup(user_id: int, user_table: str = USER_TABLE) -> Statement:
    query = sql.SQL(
        """
        SELECT user_ptr_id AS id, real_name, reputation, gold, silver, bronze
        FROM {}
        WHERE user_ptr_id = {}
        """
    ).format(sql.Identifier(user_table), sql.Placeholder())
    return Statement(query, (user_id,))
