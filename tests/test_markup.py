import pytest

from discussion_reader.parsing import ParseConfiguration, StructuralError, build_tree


def test_root_is_parser_output_container():
    tree = build_tree('<html><body><nav>menu</nav><div class="mw-parser-output"><p>x</p></div></body></html>')

    assert tree.tag_name(tree.root) == "div"
    assert tree.text(tree.root) == "x"
    assert tree.parent(tree.root) is None


def test_root_falls_back_to_body():
    tree = build_tree("<html><body><p>x</p></body></html>", ParseConfiguration(root_selector=None))

    assert tree.tag_name(tree.root) == "body"


def test_bytes_are_decoded_with_replacement_and_scripts_dropped():
    markup = b'<div class="mw-parser-output"><p>caf\xc3\xa9 \xff</p><script>alert(1)</script></div>'
    tree = build_tree(markup)

    assert tree.text(tree.root) == "café �"
    assert tree.root.find("script") is None


def test_malformed_markup_still_builds():
    tree = build_tree('<div class="mw-parser-output"><p>open <b>bold</p><dl><dd>item</div>')

    assert "item" in tree.text(tree.root)


def test_non_text_markup_is_rejected():
    with pytest.raises(StructuralError):
        build_tree(None)


def test_positions_follow_document_order():
    tree = build_tree('<div class="mw-parser-output"><p id="a">a</p><p id="b">b</p></div>')
    first, second = tree.root.find_all("p")

    assert tree.follows(second, first)
    assert not tree.follows(first, second)
    assert list(tree.ancestors(first.contents[0])) == [first]


def test_source_offset_points_at_start_tag():
    markup = '<div class="mw-parser-output">\n  <p>x</p></div>'
    tree = build_tree(markup)
    paragraph = tree.root.find("p")

    assert markup[tree.source_offset(paragraph):].startswith("<p>")


def test_wrap_and_split_keep_positions_current():
    tree = build_tree('<div class="mw-parser-output"><p>hello world<b>!</b></p></div>')
    paragraph = tree.root.find("p")
    text = paragraph.contents[0]
    tree.position(text)

    left, right = tree.split_text(text, 5)
    assert str(left) == "hello"
    assert str(right) == " world"

    wrapper = tree.wrap([right, paragraph.find("b")], "span", ["x"])
    assert tree.has_class(wrapper, "x")
    assert tree.text(wrapper) == " world!"
    assert tree.follows(wrapper, left)


def test_selector_matching_and_closest():
    tree = build_tree('<div class="mw-parser-output"><blockquote><p><span>q</span></p></blockquote></div>')
    span = tree.root.find("span")

    assert tree.matches(tree.root.find("blockquote"), ["blockquote", "q"])
    assert tree.closest(span, ["blockquote"]) is tree.root.find("blockquote")
    assert tree.closest(span, ["pre"]) is None


def test_descendants_and_scoped_find_all():
    tree = build_tree('<div class="mw-parser-output"><p>a <a href="/x">x</a></p><p><a href="/y">y</a></p></div>')
    first, second = tree.element_children(tree.root)

    assert [tree.get_attribute(link, "href") for link in tree.find_all(["a"])] == ["/x", "/y"]
    assert [tree.get_attribute(link, "href") for link in tree.find_all(["a"], second)] == ["/y"]
    assert [tree.text(node) for node in tree.descendants(first) if tree.is_text(node)] == ["a ", "x"]
    assert list(tree.descendants(tree.children(first)[0])) == []
