#!/usr/bin/env python
"""
ABOUTME: Shared pytest fixtures for the forum archive API test suite
ABOUTME: Provides an in-memory forum database, a throwaway PostgreSQL schema, and Flask clients
"""

import os
import uuid
from datetime import datetime, timedelta

import psycopg
import pytest
from psycopg import sql
from psycopg.conninfo import make_conninfo

from core.forum_database import ForumDatabase, get_postgres_connection_string
from core.query_builder import NODE_TYPE_ALL, SOFT_DELETED_STATE, PostQuery, normalize_sort

BASE_TIME = datetime(2012, 3, 1, 12, 0, 0)

FORUM_SCHEMA_SQL = """
    CREATE TABLE forum_user (
        user_ptr_id INTEGER PRIMARY KEY,
        real_name VARCHAR(255),
        reputation INTEGER NOT NULL DEFAULT 0,
        gold SMALLINT NOT NULL DEFAULT 0,
        silver SMALLINT NOT NULL DEFAULT 0,
        bronze SMALLINT NOT NULL DEFAULT 0
    );
    CREATE TABLE forum_node (
        id INTEGER PRIMARY KEY,
        title VARCHAR(300),
        tagnames VARCHAR(125),
        author_id INTEGER,
        body TEXT,
        node_type VARCHAR(16) NOT NULL,
        parent_id INTEGER,
        added_at TIMESTAMP NOT NULL,
        score INTEGER NOT NULL DEFAULT 0,
        state_string TEXT NOT NULL DEFAULT ''
    );
"""


def make_node(node_id, node_type="question", parent_id=None, minutes=0, score=0, deleted=False, **fields):
    """Build a forum_node row dict with sensible defaults."""
    return {
        "id": node_id,
        "title": fields.get("title", f"Question {node_id}" if node_type == "question" else ""),
        "tagnames": fields.get("tagnames", ""),
        "author_id": fields.get("author_id", 1),
        "body": fields.get("body", f"Body of node {node_id}"),
        "node_type": node_type,
        "parent_id": parent_id,
        "added_at": fields.get("added_at", BASE_TIME + timedelta(minutes=minutes)),
        "score": score,
        "state_string": SOFT_DELETED_STATE if deleted else fields.get("state_string", ""),
    }


def make_user(user_id, real_name="Test User", reputation=0, gold=0, silver=0, bronze=0):
    return {
        "user_ptr_id": user_id,
        "real_name": real_name,
        "reputation": reputation,
        "gold": gold,
        "silver": silver,
        "bronze": bronze,
    }


# =============================================================================
# IN-MEMORY DATABASE
# =============================================================================


class FakeForumDatabase:
    """In-memory stand-in for ForumDatabase with the same read semantics."""

    def __init__(self, nodes=None, users=None, healthy=True):
        self.nodes = {node["id"]: dict(node) for node in nodes or []}
        self.users = {user["user_ptr_id"]: dict(user) for user in users or [make_user(1)]}
        self.healthy = healthy
        self.calls = []
        self.fail_with = None

    def _check_failure(self):
        if self.fail_with is not None:
            raise self.fail_with

    def _visible(self, node):
        return node.get("state_string") != SOFT_DELETED_STATE

    def _children(self, node_id, node_type):
        return [
            child
            for child in self.nodes.values()
            if child["parent_id"] == node_id and child["node_type"] == node_type and self._visible(child)
        ]

    def _row(self, node):
        row = dict(node)
        if node["node_type"] != "question":
            parent = self.nodes.get(node["parent_id"])
            parent_title = parent["title"] if parent and self._visible(parent) else "Deleted Post"
            row["title"] = f"{node['node_type'].capitalize()} to: {parent_title}"
        author = self.users.get(node.get("author_id"))
        row["author_name"] = author["real_name"] if author else None
        # Counts come back as strings, as some drivers return aggregates
        row["answer_count"] = str(len(self._children(node["id"], "answer")))
        row["comment_count"] = str(len(self._children(node["id"], "comment")))
        return row

    def _matches(self, node, query: PostQuery):
        if not self._visible(node):
            return False
        if query.node_type != NODE_TYPE_ALL and node["node_type"] != query.node_type:
            return False
        if query.search:
            needle = query.search.lower()
            haystacks = [node.get("title") or "", node.get("body") or "", node.get("tagnames") or ""]
            if not any(needle in haystack.lower() for haystack in haystacks):
                return False
        tokens = {token for token in (node.get("tagnames") or "").lower().replace(",", " ").split()}
        return all(tag in tokens for tag in query.tags)

    def health_check(self):
        self.calls.append(("health_check",))
        return self.healthy

    def get_pool_stats(self):
        return {"min_size": 0, "max_size": 0}

    def list_posts(self, query: PostQuery):
        self.calls.append(("list_posts", query))
        self._check_failure()
        rows = [self._row(node) for node in self.nodes.values() if self._matches(node, query)]

        def interactions(row):
            return int(row["answer_count"]) + int(row["comment_count"])

        # Tie-breakers first, primary key last (sorts are stable)
        rows.sort(key=lambda row: (row["added_at"], row["id"]), reverse=True)
        sort_by = normalize_sort(query.sort_by)
        primary = {
            "date_desc": (lambda row: row["added_at"], True),
            "date_asc": (lambda row: row["added_at"], False),
            "score_desc": (lambda row: row["score"], True),
            "score_asc": (lambda row: row["score"], False),
            "interactions_desc": (interactions, True),
            "interactions_asc": (interactions, False),
        }[sort_by]
        rows.sort(key=primary[0], reverse=primary[1])

        page_rows = rows[query.offset : query.offset + query.limit]
        return page_rows, str(len(rows))

    def get_question(self, post_id):
        self.calls.append(("get_question", post_id))
        self._check_failure()
        node = self.nodes.get(post_id)
        if node is None or not self._visible(node) or node["node_type"] != "question":
            return None
        return self._row(node)

    def get_thread(self, post_id, include_replies=False):
        self.calls.append(("get_thread", post_id, include_replies))
        self._check_failure()
        children = self._children(post_id, "answer") + self._children(post_id, "comment")
        rank = {"answer": 1, "comment": 2}
        children.sort(key=lambda node: (rank[node["node_type"]], -node["score"], node["added_at"], node["id"]))
        replies = []
        if include_replies:
            for child in children:
                replies.extend(sorted(self._children(child["id"], "comment"), key=lambda n: (n["added_at"], n["id"])))
        return [self._row(node) for node in children], [self._row(node) for node in replies]

    def get_user(self, user_id):
        self.calls.append(("get_user", user_id))
        self._check_failure()
        user = self.users.get(user_id)
        if user is None:
            return None
        return {"id": user["user_ptr_id"], **{k: v for k, v in user.items() if k != "user_ptr_id"}}


@pytest.fixture
def fake_db():
    """Empty in-memory forum with one user."""
    return FakeForumDatabase()


@pytest.fixture
def thread_forum():
    """A question with 2 answers (scores 5, 3), 1 comment, a deleted answer and a reply."""
    return FakeForumDatabase(
        nodes=[
            make_node(1, "question", minutes=0, score=10, title="How do I archive?", tagnames="archive backup"),
            make_node(2, "answer", parent_id=1, minutes=5, score=3),
            make_node(3, "answer", parent_id=1, minutes=10, score=5),
            make_node(4, "comment", parent_id=1, minutes=1, score=9),
            make_node(5, "answer", parent_id=1, minutes=2, score=50, deleted=True),
            make_node(6, "comment", parent_id=3, minutes=20, score=0),
            make_node(7, "question", minutes=30, score=1, title="Deleted question", deleted=True),
        ],
        users=[make_user(1, "Ayn Reader", reputation=120, gold=1, silver=2, bronze=3)],
    )


# =============================================================================
# FLASK FIXTURES
# =============================================================================


def build_test_app(db, **config):
    from archive_server import create_app

    return create_app(db, config={"TESTING": True, "RATELIMIT_ENABLED": False, **config})


@pytest.fixture
def make_client():
    """Factory returning a Flask test client serving the given database."""

    def _make_client(db):
        return build_test_app(db).test_client()

    return _make_client


@pytest.fixture
def api_client(thread_forum, make_client):
    """Flask test client for API routes backed by the thread_forum data"""
    with make_client(thread_forum) as client:
        yield client


# =============================================================================
# POSTGRESQL FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def postgres_connection_string():
    """Get PostgreSQL connection string for tests"""
    return os.environ.get("TEST_DATABASE_URL") or get_postgres_connection_string()


@pytest.fixture(scope="module")
def forum_schema(postgres_connection_string):
    """Create a throwaway schema holding forum_node/forum_user; skip if PostgreSQL is unavailable."""
    try:
        admin = psycopg.connect(postgres_connection_string, autocommit=True, connect_timeout=3)
    except psycopg.OperationalError:
        pytest.skip("PostgreSQL not available")

    schema = f"forum_test_{uuid.uuid4().hex[:10]}"
    with admin:
        admin.execute(sql.SQL("CREATE SCHEMA {}").format(sql.Identifier(schema)))
        try:
            with admin.transaction():
                admin.execute(sql.SQL("SET LOCAL search_path TO {}").format(sql.Identifier(schema)))
                admin.execute(FORUM_SCHEMA_SQL)
            yield make_conninfo(postgres_connection_string, options=f"-c search_path={schema}")
        finally:
            admin.execute(sql.SQL("DROP SCHEMA {} CASCADE").format(sql.Identifier(schema)))


def seed_forum(conninfo, nodes, users=None):
    """Replace the contents of the test forum tables."""
    users = users if users is not None else [make_user(1)]
    with psycopg.connect(conninfo) as conn:
        conn.execute("DELETE FROM forum_node")
        conn.execute("DELETE FROM forum_user")
        with conn.cursor() as cur:
            cur.executemany(
                """
                INSERT INTO forum_user (user_ptr_id, real_name, reputation, gold, silver, bronze)
                VALUES (%(user_ptr_id)s, %(real_name)s, %(reputation)s, %(gold)s, %(silver)s, %(bronze)s)
                """,
                users,
            )
            cur.executemany(
                """
                INSERT INTO forum_node
                    (id, title, tagnames, author_id, body, node_type, parent_id, added_at, score, state_string)
                VALUES
                    (%(id)s, %(title)s, %(tagnames)s, %(author_id)s, %(body)s, %(node_type)s, %(parent_id)s,
                     %(added_at)s, %(score)s, %(state_string)s)
                """,
                nodes,
            )


@pytest.fixture(scope="module")
def postgres_db(forum_schema):
    """ForumDatabase bound to the throwaway schema (module-scoped for performance)"""
    db = ForumDatabase(forum_schema, pool_size=2)
    if not db.health_check():
        db.close()
        pytest.skip("PostgreSQL not available")

    yield db
    db.close()
