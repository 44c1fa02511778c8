from sheetbill.pagination import (
    AFTER, BLOCK, ROW, TABLE_FOOTER, TABLE_HEADER, TableDocument, pack_pages, paginate,
)

HEADER, FOOTER, ROW_H = 40, 60, 20


def rows(n):
    return [ROW_H] * n


def kinds(page):
    return [k for k, _ in page]


def row_indexes(pages):
    return [i for page in pages for k, i in page if k == ROW]


def test_twenty_five_rows_fit_one_page():
    pages = pack_pages([], HEADER, rows(25), FOOTER, [])
    assert len(pages) == 1
    assert kinds(pages[0]) == [TABLE_HEADER] + [ROW] * 25 + [TABLE_FOOTER]


def test_last_row_that_exactly_fits_with_footer_stays():
    # 40 + 45 * 20 + 60 == 1000
    assert len(pack_pages([], HEADER, rows(45), FOOTER, [])) == 1


def test_last_row_without_room_for_footer_moves_to_new_page():
    pages = pack_pages([], HEADER, rows(46), FOOTER, [])
    assert len(pages) == 2
    assert pages[1] == [(TABLE_HEADER, None), (ROW, 45), (TABLE_FOOTER, None)]


def test_forty_eight_rows():
    pages = pack_pages([], HEADER, rows(48), FOOTER, [])
    assert len(pages) == 2
    assert row_indexes(pages) == list(range(48))


def test_header_repeats_on_every_table_page():
    pages = pack_pages([100], HEADER, rows(100), FOOTER, [200, 300])
    assert all(page for page in pages)
    assert row_indexes(pages) == list(range(100))
    table_pages = [p for p in pages if ROW in kinds(p)]
    assert len(table_pages) == 3
    for page in table_pages:
        first_row = kinds(page).index(ROW)
        assert kinds(page)[first_row - 1] == TABLE_HEADER
    footers = [k for p in pages for k, _ in p if k == TABLE_FOOTER]
    assert footers == [TABLE_FOOTER]
    assert pages[-1][-1] == (AFTER, 1)


def test_every_page_fits_max_height():
    before, after = [120, 80], [150, 400, 90]
    row_heights = [20, 35, 60, 20, 110] * 12
    heights = {BLOCK: before, AFTER: after, ROW: row_heights}
    pages = pack_pages(before, HEADER, row_heights, FOOTER, after)
    for page in pages:
        total = 0
        for k, i in page:
            if k == TABLE_HEADER:
                total += HEADER
            elif k == TABLE_FOOTER:
                total += FOOTER
            else:
                total += heights[k][i]
        assert total <= 1000


def test_oversized_block_gets_its_own_page():
    pages = pack_pages([1500], HEADER, rows(3), FOOTER, [])
    assert pages[0] == [(BLOCK, 0)]
    assert kinds(pages[1]) == [TABLE_HEADER, ROW, ROW, ROW, TABLE_FOOTER]


def test_empty_table_keeps_header_and_footer_together():
    pages = pack_pages([950], HEADER, [], FOOTER, [])
    assert pages == [[(BLOCK, 0)], [(TABLE_HEADER, None), (TABLE_FOOTER, None)]]


def test_paginate_resolves_blocks():
    heights = {"title": 30, "H": 10, "r0": 20, "r1": 20, "F": 20, "notes": 50}
    doc = TableDocument(before=["title"], table_header="H", rows=["r0", "r1"],
                        table_footer="F", after=["notes"])
    pages = paginate(doc, heights.get, max_height=100)
    assert pages == [["title", "H", "r0", "r1", "F"], ["notes"]]
