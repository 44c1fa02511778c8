# Splitting an invoice into fixed-height pages.
#
# Packing is a pure function of block heights, so it is tested without any
# rendering; the renderer supplies a measurer that knows real heights.
from dataclasses import dataclass, field

BLOCK = "block"
TABLE_HEADER = "table_header"
ROW = "row"
TABLE_FOOTER = "table_footer"
AFTER = "after"


def pack_pages(before, header_height, row_heights, footer_height, after, max_height=1000):
    """
    Greedy packing into pages of at most `max_height`.

    Returns a list of pages, each a list of (kind, index) references:
    blocks before the table, then the table (its header repeated at the top of
    every page the table touches, the footer kept on the same page as the last
    row), then blocks after the table. A block that is taller than a whole
    page still gets a page of its own. Empty pages are never produced.
    """
    pages = []
    page = []
    used = 0

    def flush():
        nonlocal page, used
        if page:
            pages.append(page)
        page, used = [], 0

    def place(ref, h):
        nonlocal used
        if page and used + h > max_height:
            flush()
        page.append(ref)
        used += h

    for i, h in enumerate(before):
        place((BLOCK, i), h)

    n = len(row_heights)
    if n == 0:
        if page and used + header_height + footer_height > max_height:
            flush()
        page.extend([(TABLE_HEADER, None), (TABLE_FOOTER, None)])
        used += header_height + footer_height
    else:
        in_table = False
        for i, h in enumerate(row_heights):
            need = h + (footer_height if i == n - 1 else 0)
            head = 0 if in_table else header_height
            if page and used + head + need > max_height:
                flush()
                in_table = False
            if not in_table:
                page.append((TABLE_HEADER, None))
                used += header_height
                in_table = True
            page.append((ROW, i))
            used += h
        page.append((TABLE_FOOTER, None))
        used += footer_height

    for i, h in enumerate(after):
        place((AFTER, i), h)

    flush()
    return pages


@dataclass
class TableDocument:
    """Blocks of one invoice in reading order, as the packer sees them."""
    before: list = field(default_factory=list)
    table_header: object = None
    rows: list = field(default_factory=list)
    table_footer: object = None
    after: list = field(default_factory=list)

    def resolve(self, ref):
        kind, i = ref
        if kind == BLOCK:
            return self.before[i]
        if kind == AFTER:
            return self.after[i]
        if kind == ROW:
            return self.rows[i]
        if kind == TABLE_HEADER:
            return self.table_header
        return self.table_footer


def paginate(document, measurer, max_height=1000):
    """
    Measure every block of `document` with `measurer(block) -> height` and pack.
    Returns pages as lists of the document's own blocks.
    """
    refs = pack_pages(
        [measurer(b) for b in document.before],
        measurer(document.table_header),
        [measurer(r) for r in document.rows],
        measurer(document.table_footer),
        [measurer(b) for b in document.after],
        max_height=max_height,
    )
    return [[document.resolve(ref) for ref in page] for page in refs]
