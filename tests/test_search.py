from __future__ import annotations

import pytest

from chatindex.store import SessionQuery
from chatindex.store.search import build_match_expression


def _seed_sessions(store, make_session, count: int) -> None:
    for index in range(count):
        stamp = f"2024-02-{index + 1:02d}T12:00:00+00:00"
        store.upsert_session(
            make_session(
                f"s{index:02d}",
                [("user", f"question {index} about deploys"), ("assistant", "answer")],
                created_at=stamp,
                updated_at=stamp,
            )
        )


@pytest.mark.parametrize(
    ("total", "page", "page_size", "expected_items", "expected_more"),
    [
        (0, 1, 20, 0, False),
        (20, 1, 20, 20, False),
        (21, 1, 20, 20, True),
        (21, 2, 20, 1, False),
        (5, 3, 2, 1, False),
    ],
)
def test_list_sessions_has_more_boundaries(
    store, make_session, total, page, page_size, expected_items, expected_more
) -> None:
    _seed_sessions(store, make_session, total)

    result = store.get_sessions(SessionQuery(page=page, page_size=page_size))

    assert result.total == total
    assert len(result.items) == expected_items
    assert result.has_more is expected_more


def test_list_sessions_orders_newest_first(store, make_session) -> None:
    _seed_sessions(store, make_session, 3)

    result = store.get_sessions()

    assert [s.id for s in result.items] == ["s02", "s01", "s00"]


def test_search_total_agrees_with_items(store, make_session) -> None:
    _seed_sessions(store, make_session, 7)

    first = store.query(SessionQuery(keyword="deploys", page_size=5))
    second = store.query(SessionQuery(keyword="deploys", page=2, page_size=5))

    assert first.total == 7
    assert len(first.items) + len(second.items) == 7
    assert first.has_more is True
    assert second.has_more is False


def test_keyword_matching_one_session_returns_exactly_it(store, make_session) -> None:
    store.upsert_session(make_session("s1", [("user", "configure the kubernetes ingress")]))
    store.upsert_session(make_session("s2", [("user", "write a haiku")]))

    result = store.query(SessionQuery(keyword="kubernetes"))

    assert result.total == 1
    hit = result.items[0]
    assert hit.session.id == "s1"
    assert hit.match_count == 1
    assert "[kubernetes]" in hit.matches[0].snippet


def test_keyword_search_uses_stemming(store, make_session) -> None:
    store.upsert_session(make_session("s1", [("user", "the tests are running slowly")]))

    assert store.query(SessionQuery(keyword="run")).total == 1


def test_title_matches_are_searchable(store, make_session) -> None:
    store.upsert_session(make_session("s1", [("user", "hello")], title="Quarterly roadmap"))

    assert store.query(SessionQuery(keyword="roadmap")).total == 1


def test_tag_filter_requires_all_tags(store, make_session) -> None:
    store.upsert_session(make_session("both", [("user", "x")], tags=["python", "sql"]))
    store.upsert_session(make_session("one", [("user", "x")], tags=["python"]))

    result = store.get_sessions(SessionQuery(tags=["Python", "SQL"]))

    assert [s.id for s in result.items] == ["both"]
    assert result.total == 1


def test_role_filter_counts_only_matching_roles(store, make_session) -> None:
    store.upsert_session(
        make_session(
            "s1",
            [
                ("user", "refactor the parser"),
                ("assistant", "parser refactor plan"),
                ("user", "parser tests too"),
                ("assistant", "parser tests added"),
                ("user", "thanks for the parser work"),
            ],
        )
    )

    users = store.query(SessionQuery(keyword="parser", roles=["user"]))
    assistants = store.query(SessionQuery(keyword="parser", roles=["assistant"]))

    assert users.items[0].match_count == 3
    assert assistants.items[0].match_count == 2
    assert all(m.role == "assistant" for m in assistants.items[0].matches)


def test_role_filter_without_keyword_requires_role_presence(store, make_session) -> None:
    store.upsert_session(make_session("with-system", [("system", "boot"), ("user", "hi")]))
    store.upsert_session(make_session("plain", [("user", "hi")]))

    result = store.get_sessions(SessionQuery(roles=["system"]))

    assert [s.id for s in result.items] == ["with-system"]


def test_date_only_upper_bound_covers_whole_day(store, make_session) -> None:
    store.upsert_session(
        make_session("late", [("user", "x")], created_at="2024-05-01T23:30:00+00:00")
    )
    store.upsert_session(
        make_session("next", [("user", "x")], created_at="2024-05-02T00:30:00+00:00")
    )

    result = store.get_sessions(SessionQuery(date_from="2024-05-01", date_to="2024-05-01"))

    assert [s.id for s in result.items] == ["late"]


def test_source_and_min_messages_filters(store, make_session) -> None:
    store.upsert_session(make_session("a", [("user", "x")] * 3, source="cursor"))
    store.upsert_session(make_session("b", [("user", "x")], source="cursor"))
    store.upsert_session(make_session("c", [("user", "x")] * 3, source="upload"))

    result = store.get_sessions(SessionQuery(sources=["cursor"], min_messages=2))

    assert [s.id for s in result.items] == ["a"]


def test_invalid_fts_expression_is_a_soft_failure(store, make_session) -> None:
    store.upsert_session(make_session("s1", [("user", "hello")]))

    result = store.query(SessionQuery(keyword='"unterminated AND'))

    assert result.items == []
    assert result.total == 0
    assert result.error is not None
    assert result.to_dict()["elapsed_ms"] is None


def test_page_size_is_clamped() -> None:
    query = SessionQuery(page=0, page_size=10_000).normalized()

    assert query.page == 1
    assert query.page_size == 200


def test_build_match_expression_quotes_plain_words() -> None:
    assert build_match_expression("git rebase") == '"git" "rebase"'
    assert build_match_expression("deploy*") == "deploy*"
    assert build_match_expression("a OR b") == "a OR b"
    assert build_match_expression("   ") == ""
    assert build_match_expression("TypeError: foo") == '"TypeError:" "foo"'
    assert build_match_expression("c++ templates") == '"c++" "templates"'
    assert build_match_expression("title:deploy") == "title:deploy"


@pytest.mark.parametrize(
    "keyword",
    ["TypeError: foo", "c++ templates", "x^2 {braces}"],
)
def test_punctuated_plain_text_still_matches(store, make_session, keyword) -> None:
    store.upsert_session(
        make_session(
            "s1",
            [
                ("user", "I get TypeError: foo is undefined"),
                ("assistant", "c++ templates need x^2 {braces} sometimes"),
            ],
        )
    )
    store.upsert_session(make_session("s2", [("user", "nothing relevant")]))

    result = store.query(SessionQuery(keyword=keyword))

    assert result.error is None
    assert [hit.session.id for hit in result.items] == ["s1"]


def test_title_column_filter_passes_through(store, make_session) -> None:
    store.upsert_session(make_session("s1", [("user", "body text")], title="Kubernetes ingress"))
    store.upsert_session(make_session("s2", [("user", "kubernetes in the body")], title="Other"))

    result = store.query(SessionQuery(keyword="title:kubernetes"))

    assert result.error is None
    assert [hit.session.id for hit in result.items] == ["s1"]


def test_tag_filter_without_valid_characters_matches_nothing(store, make_session) -> None:
    store.upsert_session(make_session("s1", [("user", "deploy notes")], tags=["ops"]))
    store.upsert_session(make_session("s2", [("user", "deploy again")]))

    assert store.query(SessionQuery(tags=["!!!"])).total == 0
    assert store.query(SessionQuery(tags=["ops", "!!!"])).total == 0
    assert store.query(SessionQuery(keyword="deploy", tags=["!!!"])).total == 0
    assert store.query(SessionQuery(tags=["  "])).total == 2
