"""
HTML implementation of the host document model.

The document is parsed once into a small node tree with the standard library
HTML parser. Text nodes are the regions; decorations are rendered as
<mark class="linkscout-term"> elements carrying the canonical title.
"""

import html
import logging
from html.parser import HTMLParser
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Set, Tuple
from urllib.parse import unquote

from ..linking.internal.LinkingTypes import DEFAULT_DECORATION_CLASS, AnnotationSegment
from .HostDocument import HostDocument, TextRegion

logger = logging.getLogger(__name__)

VOID_ELEMENTS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "param", "source", "track", "wbr"}
)
RAW_TEXT_ELEMENTS = frozenset({"script", "style"})
# Never annotated, whatever the configured exclusions
NON_CONTENT_ELEMENTS = RAW_TEXT_ELEMENTS | {"head", "title", "noscript", "template", "textarea"}

# Start tag -> (open elements it implicitly closes, elements that stop the search)
IMPLIED_END_TAGS: Dict[str, Tuple[FrozenSet[str], FrozenSet[str]]] = {
    "li": (frozenset({"li"}), frozenset({"ul", "ol", "menu", "table"})),
    "dt": (frozenset({"dt", "dd"}), frozenset({"dl", "table"})),
    "dd": (frozenset({"dt", "dd"}), frozenset({"dl", "table"})),
    "tr": (frozenset({"tr"}), frozenset({"table", "thead", "tbody", "tfoot"})),
    "td": (frozenset({"td", "th"}), frozenset({"tr", "table"})),
    "th": (frozenset({"td", "th"}), frozenset({"tr", "table"})),
    "thead": (frozenset({"thead", "tbody", "tfoot", "tr"}), frozenset({"table"})),
    "tbody": (frozenset({"thead", "tbody", "tfoot", "tr"}), frozenset({"table"})),
    "tfoot": (frozenset({"thead", "tbody", "tfoot", "tr"}), frozenset({"table"})),
    "option": (frozenset({"option"}), frozenset({"select", "datalist", "optgroup"})),
    "optgroup": (frozenset({"option", "optgroup"}), frozenset({"select", "datalist"})),
}
# Start tags that close an open <p>
CLOSES_PARAGRAPH = frozenset(
    {
        "address", "article", "aside", "blockquote", "details", "dialog", "div", "dl", "dd", "dt",
        "fieldset", "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6",
        "header", "hgroup", "hr", "li", "main", "menu", "nav", "ol", "p", "pre", "section", "table", "ul",
    }
)
PARAGRAPH_SCOPE = frozenset({"applet", "button", "caption", "html", "marquee", "object", "table", "td", "th", "template"})

Attributes = List[Tuple[str, Optional[str]]]


class Node:
    def __init__(self) -> None:
        self.parent: Optional["ElementNode"] = None

    def ancestors(self) -> Iterator["ElementNode"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent


class TextNode(Node):
    """A run of character data; the region type of HTMLDocument."""

    def __init__(self, text: str):
        super().__init__()
        self._text = text

    @property
    def text(self) -> str:
        return self._text

    def __repr__(self) -> str:
        return f"TextNode({self._text[:40]!r})"


class CommentNode(Node):
    def __init__(self, data: str):
        super().__init__()
        self.data = data


class EndTagNode(Node):
    """An end tag without a matching open element, kept so it is written back as found."""

    def __init__(self, tag: str):
        super().__init__()
        self.tag = tag


class DeclarationNode(Node):
    def __init__(self, data: str):
        super().__init__()
        self.data = data


class ElementNode(Node):
    def __init__(self, tag: str, attrs: Optional[Attributes] = None):
        super().__init__()
        self.tag = tag.lower()
        self.attrs: Attributes = list(attrs or [])
        self.children: List[Node] = []
        # False for elements whose end tag was implied by the markup
        self.has_end_tag = True

    def get(self, name: str) -> Optional[str]:
        for key, value in self.attrs:
            if key == name:
                return value
        return None

    @property
    def classes(self) -> Set[str]:
        return set((self.get("class") or "").split())

    def append(self, child: Node) -> None:
        child.parent = self
        self.children.append(child)

    def iter(self) -> Iterator[Node]:
        """Depth-first traversal in document order, self included."""
        yield self
        for child in self.children:
            if isinstance(child, ElementNode):
                yield from child.iter()
            else:
                yield child

    def text_content(self) -> str:
        return "".join(node.text for node in self.iter() if isinstance(node, TextNode))

    def __repr__(self) -> str:
        return f"ElementNode(<{self.tag}>, {len(self.children)} children)"


class _TreeBuilder(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = ElementNode("#document")
        self._stack: List[ElementNode] = [self.root]

    def _close_open(self, closes: FrozenSet[str], stops: FrozenSet[str]) -> None:
        """Pop the outermost open element in closes, searching down to the first element in stops."""
        target = None
        for depth in range(len(self._stack) - 1, 0, -1):
            current = self._stack[depth].tag
            if current in closes:
                target = depth
            elif current in stops:
                break
        if target is not None:
            del self._stack[target:]

    def handle_starttag(self, tag: str, attrs: Attributes) -> None:
        element = ElementNode(tag, attrs)
        if element.tag in CLOSES_PARAGRAPH:
            self._close_open(frozenset({"p"}), PARAGRAPH_SCOPE)
        rule = IMPLIED_END_TAGS.get(element.tag)
        if rule is not None:
            self._close_open(*rule)
        element.has_end_tag = False
        self._stack[-1].append(element)
        if element.tag not in VOID_ELEMENTS:
            self._stack.append(element)

    def handle_startendtag(self, tag: str, attrs: Attributes) -> None:
        self._stack[-1].append(ElementNode(tag, attrs))

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        for depth in range(len(self._stack) - 1, 0, -1):
            if self._stack[depth].tag == tag:
                self._stack[depth].has_end_tag = True
                del self._stack[depth:]
                return
        logger.debug(f"Keeping unmatched end tag </{tag}>")
        self._stack[-1].append(EndTagNode(tag))

    def handle_data(self, data: str) -> None:
        parent = self._stack[-1]
        # Merge adjacent character data so one run of text is one region
        if parent.children and isinstance(parent.children[-1], TextNode):
            previous = parent.children[-1]
            merged = TextNode(previous.text + data)
            merged.parent = parent
            parent.children[-1] = merged
        else:
            parent.append(TextNode(data))

    def handle_comment(self, data: str) -> None:
        self._stack[-1].append(CommentNode(data))

    def handle_decl(self, decl: str) -> None:
        self._stack[-1].append(DeclarationNode(decl))


class HTMLDocument(HostDocument):
    """Mutable HTML document tree."""

    def __init__(
        self,
        root: ElementNode,
        title: Optional[str] = None,
        decoration_class: str = DEFAULT_DECORATION_CLASS,
    ):
        self.root = root
        self._title = title
        self._decoration_class = decoration_class
        self.replacements = 0

    @classmethod
    def from_html(
        cls,
        markup: str,
        title: Optional[str] = None,
        decoration_class: str = DEFAULT_DECORATION_CLASS,
    ) -> "HTMLDocument":
        builder = _TreeBuilder()
        builder.feed(markup)
        builder.close()
        return cls(builder.root, title=title, decoration_class=decoration_class)

    @property
    def title(self) -> str:
        if self._title is not None:
            return self._title
        heading = self.find_by_id("firstHeading")
        if heading is None:
            heading = next(self.find_all("h1"), None)
        if heading is None:
            heading = next(self.find_all("title"), None)
        return " ".join(heading.text_content().split()) if heading is not None else ""

    @property
    def decoration_class(self) -> str:
        return self._decoration_class

    def find_all(self, tag: str) -> Iterator[ElementNode]:
        for node in self.root.iter():
            if isinstance(node, ElementNode) and node.tag == tag:
                yield node

    def find_by_id(self, element_id: str) -> Optional[ElementNode]:
        for node in self.root.iter():
            if isinstance(node, ElementNode) and node.get("id") == element_id:
                return node
        return None

    def _is_excluded(self, element: ElementNode, tags: Set[str], classes: Set[str]) -> bool:
        return element.tag in tags or bool(element.classes & classes)

    def is_protected(self, region: TextRegion, exclude_tags: Iterable[str], exclude_classes: Iterable[str]) -> bool:
        if not isinstance(region, TextNode) or region.parent is None:
            return True
        tags = {t.lower() for t in exclude_tags} | NON_CONTENT_ELEMENTS
        classes = set(exclude_classes) | {self._decoration_class}
        return any(self._is_excluded(ancestor, tags, classes) for ancestor in region.ancestors())

    def list_regions(
        self,
        exclude_tags: Iterable[str],
        exclude_classes: Iterable[str],
        root: Optional[object] = None,
    ) -> List[TextRegion]:
        start = root if isinstance(root, ElementNode) else self.root
        tags = {t.lower() for t in exclude_tags} | NON_CONTENT_ELEMENTS
        classes = set(exclude_classes) | {self._decoration_class}

        regions: List[TextRegion] = []

        def walk(element: ElementNode) -> None:
            for child in element.children:
                if isinstance(child, ElementNode):
                    if not self._is_excluded(child, tags, classes):
                        walk(child)
                elif isinstance(child, TextNode) and child.text.strip():
                    regions.append(child)

        if start is not self.root and (
            self._is_excluded(start, tags, classes)
            or any(self._is_excluded(ancestor, tags, classes) for ancestor in start.ancestors())
        ):
            return regions
        walk(start)
        return regions

    def replace(self, region: TextRegion, segments: Sequence[AnnotationSegment]) -> None:
        if not isinstance(region, TextNode) or region.parent is None:
            raise ValueError("Region is not attached to this document")
        parent = region.parent
        index = next(i for i, child in enumerate(parent.children) if child is region)

        nodes: List[Node] = []
        for segment in segments:
            if not segment.text:
                continue
            if segment.is_decoration:
                nodes.append(self._decoration(segment))
            else:
                nodes.append(TextNode(segment.text))
        for node in nodes:
            node.parent = parent

        parent.children[index : index + 1] = nodes
        region.parent = None
        self.replacements += 1

    def _decoration(self, segment: AnnotationSegment) -> ElementNode:
        title = segment.canonical_title or segment.text
        attrs: Attributes = [
            ("class", self._decoration_class),
            ("data-title", title),
            ("data-term", segment.term_key or segment.text.casefold()),
            ("title", f"An article for “{title}” exists. Consider adding a link."),
        ]
        mark = ElementNode("mark", attrs)
        mark.append(TextNode(segment.text))
        return mark

    def decorations(self) -> List[ElementNode]:
        return [
            node
            for node in self.root.iter()
            if isinstance(node, ElementNode) and self._decoration_class in node.classes
        ]

    def decoration_count(self) -> int:
        return len(self.decorations())

    def decorated_terms(self) -> Set[str]:
        terms: Set[str] = set()
        for mark in self.decorations():
            terms.add(mark.get("data-term") or mark.text_content().casefold())
        return terms

    def linked_texts(self) -> List[str]:
        texts = (" ".join(a.text_content().split()) for a in self.find_all("a"))
        return [text for text in texts if text]

    def linked_titles(self) -> List[str]:
        """Article titles of internal wiki links (/wiki/Title, namespaces skipped)."""
        titles: Dict[str, None] = {}
        for anchor in self.find_all("a"):
            href = anchor.get("href") or ""
            if not href.startswith("/wiki/"):
                continue
            title = unquote(href[len("/wiki/") :].split("#", 1)[0]).replace("_", " ").strip()
            if title and ":" not in title:
                titles[title] = None
        return list(titles)

    def to_html(self) -> str:
        return "".join(self._render(child) for child in self.root.children)

    def _render(self, node: Node) -> str:
        if isinstance(node, TextNode):
            if node.parent is not None and node.parent.tag in RAW_TEXT_ELEMENTS:
                return node.text
            return html.escape(node.text, quote=False)
        if isinstance(node, CommentNode):
            return f"<!--{node.data}-->"
        if isinstance(node, DeclarationNode):
            return f"<!{node.data}>"
        if isinstance(node, EndTagNode):
            return f"</{node.tag}>"
        assert isinstance(node, ElementNode)
        attrs = "".join(
            f" {name}" if value is None else f' {name}="{html.escape(value, quote=True)}"'
            for name, value in node.attrs
        )
        if node.tag in VOID_ELEMENTS:
            return f"<{node.tag}{attrs}>"
        inner = "".join(self._render(child) for child in node.children)
        end = f"</{node.tag}>" if node.has_end_tag else ""
        return f"<{node.tag}{attrs}>{inner}{end}"

