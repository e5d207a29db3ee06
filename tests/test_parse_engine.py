import pytest

from discussion_reader.parsing import (
    DiscussionParsingEngine,
    ParseRequest,
    StructuralError,
)
from discussion_reader.parsing.boundaries import COMMENT_ID_ATTRIBUTE, PART_CLASS


def sig(user, time="10:00", date="1 January 2020"):
    return f'<a href="/wiki/User:{user}" title="User:{user}">{user}</a> {time}, {date} (UTC)'


def page(body):
    return f'<html><body><div class="mw-parser-output">{body}</div></body></html>'


def parse(html, config=None, globals_=None, engine=None):
    engine = engine or DiscussionParsingEngine()
    request = ParseRequest.from_message({"html": html, "config": config or {}, "globals": globals_ or {}})
    return engine.parse(request)


THREAD = page(
    '<h2 id="Topic">Topic</h2>\n'
    f"<p>Opening post. {sig('Alice')}</p>\n"
    f"<dl><dd>First reply. {sig('Bob', '11:00')}\n"
    f"<dl><dd>Second reply. {sig('Carol', '12:00')}</dd></dl></dd></dl>\n"
    f"<p>Back to the top level. {sig('Dave', '13:00')}</p>\n"
)


def test_single_signed_paragraph():
    result = parse(page(f"<p>Hello. {sig('Alice')}</p>"))

    assert len(result.comments) == 1
    comment = result.comments[0].to_message()
    assert comment["authorName"] == "Alice"
    assert comment["timestamp"] == "10:00, 1 January 2020 (UTC)"
    assert comment["date"] == "2020-01-01T10:00:00+00:00"
    assert comment["anchor"] == "202001011000_Alice"
    assert comment["level"] == 0
    assert comment["isOpeningSection"] is False
    assert comment["followsHeading"] is False
    assert comment["section"] is None
    assert result.sections == []


def test_reply_under_heading_follows_heading():
    result = parse(page(f"<h2>Topic</h2><dl><dd>Reply {sig('Bob')}</dd></dl>"))

    assert len(result.sections) == 1
    section = result.sections[0]
    assert section.headline == "Topic"
    assert section.level == 2

    assert len(result.comments) == 1
    comment = result.comments[0]
    assert comment.level == 1
    assert comment.follows_heading is True
    assert comment.is_opening_section is False
    assert comment.section.headline == "Topic"
    assert section.comment_ids == [comment.id]


def test_only_attributed_timestamp_becomes_a_comment():
    html = page(
        "<p>Meeting at 10:00, 1 January 2020 was fine. "
        '<a href="/wiki/User:Bob" title="User:Bob">Bob</a> 11:00, 2 January 2020 (UTC)</p>'
    )
    engine = DiscussionParsingEngine()
    session = engine.run(ParseRequest.from_message({"html": html}))

    assert len(session.signatures) == 1
    assert len(session.comments) == 1
    assert session.comments[0].author_name == "Bob"
    assert session.comments[0].timestamp_text == "11:00, 2 January 2020 (UTC)"


def test_floating_only_comment_is_dropped_and_parse_continues():
    html = page(
        f"<p>Regular comment. {sig('Bob')}</p>"
        f'<div style="float:right">Notice {sig("Alice", "11:00")}</div>'
    )
    result = parse(html)

    assert [comment.author_name for comment in result.comments] == ["Bob"]
    assert result.metadata["dropped_comments"] == 1


def test_thread_levels_and_parents():
    result = parse(THREAD, globals_={"currentUserName": "Alice", "currentPageName": "Talk:Main"})
    comments = {comment.author_name: comment for comment in result.comments}

    assert [comment.author_name for comment in result.comments] == ["Alice", "Bob", "Carol", "Dave"]
    assert [comment.id for comment in result.comments] == [0, 1, 2, 3]
    assert comments["Alice"].level == 0
    assert comments["Bob"].level == 1
    assert comments["Carol"].level == 2
    assert comments["Dave"].level == 0

    assert comments["Alice"].parent_comment_id is None
    assert comments["Bob"].parent_comment_id == comments["Alice"].id
    assert comments["Carol"].parent_comment_id == comments["Bob"].id
    assert comments["Dave"].parent_comment_id is None

    assert comments["Alice"].own is True
    assert comments["Bob"].to_me is True
    assert comments["Bob"].target_comment_author_name == "Alice"
    assert comments["Carol"].to_me is False
    assert comments["Carol"].target_comment_author_name == "Bob"


def test_opening_comment_of_section():
    result = parse(THREAD)
    opening = result.comments[0]

    assert opening.is_opening_section is True
    assert opening.follows_heading is True
    assert opening.opening_section_level == 2
    assert not any(comment.is_opening_section for comment in result.comments[1:])


def test_parse_is_idempotent():
    engine = DiscussionParsingEngine()
    first = parse(THREAD, engine=engine)
    second = parse(THREAD, engine=engine)
    third = parse(THREAD)

    def summary(result):
        return [(c.id, c.anchor, c.level, c.parent_comment_id) for c in result.comments]

    assert summary(first) == summary(second) == summary(third)


def test_comment_parts_are_disjoint_and_highlightable():
    engine = DiscussionParsingEngine()
    session = engine.run(ParseRequest.from_message({"html": THREAD}))
    tree = session.tree

    seen = set()
    for comment in session.comments:
        assert comment.highlightables
        elements = comment.elements
        for element in elements:
            assert id(element) not in seen
            seen.add(id(element))
            assert tree.has_class(element, PART_CLASS)
            assert tree.get_attribute(element, COMMENT_ID_ATTRIBUTE) == str(comment.id)
            for other in elements:
                if other is not element:
                    assert not tree.contains(other, element)


def test_anchor_lands_on_first_highlightable():
    engine = DiscussionParsingEngine()
    session = engine.run(ParseRequest.from_message({"html": THREAD}))
    opening = session.comments[0]

    assert session.tree.get_attribute(opening.highlightables[0], "id") == opening.anchor
    assert session.tree.get_attribute(opening.parts[0].node, "id") == "Topic"
    assert session.sections[0].anchor == "Topic"


def test_same_minute_signatures_get_distinct_anchors():
    html = page(f"<p>One. {sig('Alice')}</p><p>Two. {sig('Alice')}</p>")
    result = parse(html)

    assert [comment.anchor for comment in result.comments] == ["202001011000_Alice", "202001011000_Alice_2"]


def test_timezone_offset_shifts_dates_to_utc():
    result = parse(page(f"<p>Hello. {sig('Alice')}</p>"), config={"timezoneOffsetMinutes": 60})

    assert result.comments[0].date == "2020-01-01T09:00:00+00:00"
    assert result.comments[0].anchor == "202001010900_Alice"


def test_unsigned_comment_is_flagged():
    html = page(
        "<p>Anonymous remark. "
        '<span class="autosigned">— Preceding unsigned comment added by '
        '<a href="/wiki/Special:Contributions/192.0.2.1" title="Special:Contributions/192.0.2.1">192.0.2.1</a> '
        "10:00, 1 January 2020 (UTC)</span></p>"
    )
    result = parse(html)

    assert len(result.comments) == 1
    assert result.comments[0].author_name == "192.0.2.1"
    assert result.comments[0].is_unsigned is True


def test_timestamps_in_quotes_are_ignored():
    html = page(
        f"<blockquote><p>Quoted. {sig('Eve')}</p></blockquote>"
        f"<p>I agree with that. {sig('Bob', '11:00')}</p>"
    )
    result = parse(html)

    assert [comment.author_name for comment in result.comments] == ["Bob"]


def test_foreign_component_strategy_bounds_comment():
    html = page(f'<div class="ambox">Archived discussion notice</div><p>Comment. {sig("Bob")}</p>')
    engine = DiscussionParsingEngine()

    plain = engine.run(ParseRequest.from_message({"html": html}))
    assert len(plain.comments[0].parts) == 2

    bounded = engine.run(
        ParseRequest.from_message({"html": html, "config": {"foreignComponentStrategy": "mediawiki-boxes"}})
    )
    assert len(bounded.comments[0].parts) == 1
    assert bounded.tree.tag_name(bounded.comments[0].parts[0].node) == "p"


def test_injected_foreign_component_checker():
    html = page(f'<div data-widget="poll">Poll</div><p>Comment. {sig("Bob")}</p>')
    engine = DiscussionParsingEngine(
        foreign_component_checker=lambda tree, node: tree.get_attribute(node, "data-widget") is not None
    )
    session = engine.run(ParseRequest.from_message({"html": html}))

    assert len(session.comments[0].parts) == 1


def test_signature_lookback_limits():
    html = page(f'<p>Hi <a href="/wiki/User:Bob">Bob</a> <b>bold</b> <i>it</i> 10:00, 1 January 2020 (UTC)</p>')

    assert len(parse(html).comments) == 1
    assert parse(html, config={"signatureScanLimit": 2}).comments == []

    long_text = "x" * 150
    far = page(f'<p><a href="/wiki/User:Bob">Bob</a> {long_text} 10:00, 1 January 2020 (UTC)</p>')
    assert parse(far).comments == []


def test_non_text_markup_is_structural_error():
    with pytest.raises(StructuralError):
        parse(42)
    with pytest.raises(StructuralError):
        ParseRequest.from_message({"config": {}})


def test_invalid_configuration_is_structural_error():
    with pytest.raises(StructuralError):
        ParseRequest.from_message({"html": "<p></p>", "config": {"foreignComponentStrategy": "eval"}})


def test_empty_page_parses_to_nothing():
    result = parse("")

    assert result.comments == []
    assert result.sections == []
    assert result.to_message() == {"type": "parse", "comments": [], "sections": []}


def test_serialization_leaves_records_untouched():
    engine = DiscussionParsingEngine()
    session = engine.run(ParseRequest.from_message({"html": THREAD}))
    first = engine.serialize(session).to_message()
    second = engine.serialize(session).to_message()

    assert first == second
    assert session.comments[0].parts
    assert "parts" not in first["comments"][0]
    assert "highlightables" not in first["comments"][0]


def part_names(session, comment):
    return [session.tree.tag_name(part.node) for part in comment.parts]


def run(html, config=None):
    return DiscussionParsingEngine().run(ParseRequest.from_message({"html": html, "config": config or {}}))


def test_level_is_the_shallower_of_top_and_bottom():
    session = run(page(f"<dl><dd>Top part.</dd></dl><p>Bottom part. {sig('Bob')}</p>"))
    comment = session.comments[0]

    assert part_names(session, comment) == ["dd", "p"]
    assert comment.level == 0


def test_bare_inline_run_is_wrapped_in_a_div():
    session = run(page(f"Just text. {sig('Alice')}"))
    comment = session.comments[0]

    assert part_names(session, comment) == ["div"]
    wrapper = comment.parts[0].node
    assert session.tree.parent(wrapper) is session.tree.root
    assert session.tree.text(wrapper) == "Just text. Alice 10:00, 1 January 2020 (UTC)"


def test_owned_list_is_replaced_by_its_items():
    session = run(page(f"<p>Proposal:</p><ul><li>One</li><li>Two</li></ul><p>Thoughts? {sig('Alice')}</p>"))

    assert part_names(session, session.comments[0]) == ["p", "li", "li", "p"]


def test_items_holding_only_a_list_are_descended_into():
    session = run(page(f"<dl><dd><dl><dd>Deep one.</dd><dd>Deep two. {sig('Bob')}</dd></dl></dd></dl>"))
    comment = session.comments[0]

    assert part_names(session, comment) == ["dd", "dd"]
    assert comment.level == 2
    assert session.tree.parent(comment.parts[0].node) is session.tree.parent(comment.parts[1].node)


def test_comment_spanning_paragraphs():
    session = run(page(f"<p>First paragraph.</p><p>Second paragraph. {sig('Bob')}</p>"))

    assert len(session.comments) == 1
    assert part_names(session, session.comments[0]) == ["p", "p"]


def test_parents_precede_their_replies_one_level_up():
    result = parse(THREAD)
    by_id = {comment.id: comment for comment in result.comments}

    for comment in result.comments:
        if comment.parent_comment_id is None:
            continue
        parent = by_id[comment.parent_comment_id]
        assert parent.id < comment.id
        assert parent.level == comment.level - 1


OUTDENTED = page(
    "<h2>Topic</h2>"
    f"<p>Opening post. {sig('Alice')}</p>"
    f"<dl><dd>Reply. {sig('Bob', '11:00')}<dl><dd>Deeper. {sig('Carol', '12:00')}</dd></dl></dd></dl>"
    '<div class="outdent-template">└────────</div>'
    f"<p>Outdented. {sig('Erin', '13:00')}</p>"
)


def test_comment_after_outdent_replies_to_the_previous_comment():
    session = run(OUTDENTED)
    comments = {comment.author_name: comment for comment in session.comments}
    erin = comments["Erin"]

    assert erin.level == 0
    assert erin.follows_outdent is True
    assert erin.parent_comment_id == comments["Carol"].id
    assert erin.target_author_name == "Carol"
    assert part_names(session, erin) == ["p"]
    assert comments["Carol"].follows_outdent is False


def test_outdent_classes_are_configurable():
    session = run(OUTDENTED, config={"outdentClasses": []})
    erin = session.comments[-1]

    assert erin.follows_outdent is False
    assert erin.parent_comment_id is None
