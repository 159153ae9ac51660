from hanihunter.htmlutil import find_by_regexp, find_tags, get_attr, parse_html

DOC = """

<!DOCTYPE HTML>
<html lang="en">

<head>
	<link href="/css/app.css" rel="stylesheet">
</head>

<body>
	<div style="overflow-x: hidden; ">
		<div id="main-nav" class="main-nav-video-show hidden-xs">
			<a href="/" style="padding-right: 2.5%; color: white;">Home</a>
			<a class="nav-item hidden-xs nav-desktop-items " href="/search?genre=3D">3D</a>
		</div>
		<div id="content-div">
			<h3 style="font-weight: bold;">
				[中字後補] 魔騎夜談 2</h3>
			<table class="download-table">
				<tr>
					<th></th>
					<th>影片畫質</th>
					<th>下載鏈結</th>
				</tr>
				<tr>
					<td>標準畫質 (480p)</td>
					<td>mp4</td>
					<td><a class="exoclick-popunder" style="color: white;" download="">下載</a></td>
				</tr>
				<tr>
					<td>低清畫質 (240p)</td>
					<td>mp4</td>
					<td><a class="exoclick-popunder" style="color: white;">下載</a></td>
				</tr>
			</table>
		</div>
	</div>
</body>

</html>

"""


def test_find_tags_without_attrs():
    doc = parse_html(DOC)
    tables = find_tags(doc, "table", False, None)
    assert len(tables) == 1
    assert get_attr(tables[0], "class") == "download-table"


def test_find_tags_with_attrs():
    doc = parse_html(DOC)
    assert len(find_tags(doc, "table", True, [("class", "download-table")])) == 1
    assert find_tags(doc, "table", True, [("class", "other")]) == []


def test_find_tags_with_mapping_attrs():
    doc = parse_html(DOC)
    divs = find_tags(doc, "div", True, {"id": "main-nav"})
    assert [get_attr(d, "id") for d in divs] == ["main-nav"]


def test_multi_class_attribute_matches_joined_value():
    doc = parse_html(DOC)
    links = find_tags(doc, "a", True, [("class", "nav-item hidden-xs nav-desktop-items")])
    assert [a.get_text() for a in links] == ["3D"]


def test_anchors_inside_table():
    doc = parse_html(DOC)
    table = find_tags(doc, "table", False, None)[0]
    anchors = find_tags(table, "a", False, None)
    assert len(anchors) == 2
    assert get_attr(anchors[0], "download") == ""
    assert get_attr(anchors[0], "class") == "exoclick-popunder"
    assert get_attr(anchors[1], "href") == ""


def test_breadth_first_order():
    doc = parse_html('<div id="a"><div id="b"><div id="d"></div></div><div id="c"></div></div>')
    assert [get_attr(d, "id") for d in find_tags(doc, "div", False, None)] == ["a", "b", "c", "d"]


def test_regexp_does_not_cross_lines():
    assert find_by_regexp(DOC, "(<table[^>]*>)(.*?)(.*)(</table>)") == []


def test_regexp_returns_groups():
    text = "<table x><tr></tr></table>"
    result = find_by_regexp(text, "(<table[^>]*>)(.*?)(.*)(</table>)")
    assert result == [[text, "<table x>", "", "<tr></tr>", "</table>"]]


def test_regexp_absent_group_is_empty():
    assert find_by_regexp("ab", "(a)(x)?b") == [["ab", "a", ""]]