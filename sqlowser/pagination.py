from dataclasses import dataclass, replace
import logging

from sqlowser.errors import SqlowserError
from sqlowser.sqlite_driver import (
    ConnectionGateway,
    RowWindow,
    TableDescriptor,
    empty_window,
    quote_identifier,
)
from sqlowser.worker import BackgroundWorker, WorkerResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableSource:
    table: TableDescriptor

    @property
    def label(self) -> str:
        return self.table.name


@dataclass(frozen=True)
class SqlSource:
    sql: str

    @property
    def label(self) -> str:
        return "query"


Source = TableSource | SqlSource


@dataclass(frozen=True)
class FetchRequest:
    source: Source
    page: int
    page_size: int
    filter_text: str = ""

    @property
    def offset(self) -> int:
        return self.page * self.page_size


def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_filter_clause(table: TableDescriptor, filter_text: str) -> tuple[str, tuple[str, ...]]:
    """Case-insensitive substring match over the table's TEXT columns."""
    columns = table.text_columns
    if not filter_text or not columns:
        return "", ()
    pattern = f"%{escape_like(filter_text)}%"
    conditions = " OR ".join(
        f"{quote_identifier(column)} LIKE ? ESCAPE '\\'" for column in columns
    )
    return f"({conditions})", (pattern,) * len(columns)


def fetch_window(gateway: ConnectionGateway, request: FetchRequest) -> RowWindow:
    source = request.source
    if isinstance(source, TableSource):
        where_sql, params = build_filter_clause(source.table, request.filter_text)
        return gateway.fetch_table_window(
            source.table,
            where_sql,
            params,
            limit=request.page_size,
            offset=request.offset,
        )
    return gateway.execute_query(
        source.sql,
        (),
        limit=request.page_size,
        offset=request.offset,
    )


class PaginationCache:
    """Current result window for one source, fetched through the worker.

    The displayed window is only replaced when the response to the latest
    request arrives, so the previous page stays visible while loading.
    """

    def __init__(self, worker: BackgroundWorker, slot: str, page_size: int = 100) -> None:
        self._worker = worker
        self._slot = slot
        self._page_size = max(1, page_size)
        self._source: Source | None = None
        self._filter_text = ""
        self._window: RowWindow | None = None
        self._target_page = 0
        self._request_id: int | None = None
        self.error: SqlowserError | None = None

    @property
    def source(self) -> Source | None:
        return self._source

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def filter_text(self) -> str:
        return self._filter_text

    @property
    def page(self) -> int:
        if self._window is None:
            return 0
        return self._window.page_index

    @property
    def loading(self) -> bool:
        return self._request_id is not None

    def current_window(self) -> RowWindow:
        if self._window is None:
            return empty_window(self._page_size)
        return self._window

    def set_source(self, source: Source, filter_text: str = "") -> None:
        self._source = source
        self._filter_text = filter_text
        self._fetch(0)

    def clear(self) -> None:
        if self._request_id is not None:
            self._worker.cancel(self._slot)
        self._source = None
        self._window = None
        self._request_id = None
        self._target_page = 0
        self._filter_text = ""

    def set_filter(self, text: str) -> None:
        if text == self._filter_text:
            return
        self._filter_text = text
        if isinstance(self._source, TableSource):
            self._fetch(0)

    def set_page_size(self, page_size: int) -> None:
        page_size = max(1, page_size)
        if page_size == self._page_size:
            return
        self._page_size = page_size
        if self._source is not None:
            self._fetch(0)

    def refresh(self) -> None:
        if self._source is not None:
            self._fetch(self._target_page)

    def go_to_page(self, page: int) -> None:
        if self._source is None:
            return
        page = max(0, page)
        last_page = self._known_last_page()
        if last_page is not None:
            page = min(page, last_page)
        if page == self._target_page and self._window is not None and not self.loading:
            return
        self._fetch(page)

    def go_to_last_page(self) -> None:
        last_page = self._known_last_page()
        if last_page is not None:
            self.go_to_page(last_page)

    def next_page(self) -> None:
        window = self._window
        if window is None:
            return
        last_page = self._known_last_page()
        if last_page is not None:
            if self._target_page >= last_page:
                return
        elif not window.has_more or self._target_page != window.page_index:
            return
        self.go_to_page(self._target_page + 1)

    def prev_page(self) -> None:
        if self._window is None or self._target_page == 0:
            return
        self.go_to_page(self._target_page - 1)

    def _known_last_page(self) -> int | None:
        if self._window is None:
            return None
        return self._window.last_page

    def _fetch(self, page: int) -> None:
        if self._source is None:
            return
        self._target_page = page
        request = FetchRequest(
            source=self._source,
            page=page,
            page_size=self._page_size,
            filter_text=self._filter_text if isinstance(self._source, TableSource) else "",
        )
        self._request_id = self._worker.submit(
            self._slot,
            fetch_window,
            self._worker.gateway,
            request,
        )

    def apply_result(self, result: WorkerResult) -> bool:
        """Swaps in the window if `result` answers the current request."""
        if result.slot != self._slot or result.request_id != self._request_id:
            return False
        self._request_id = None
        if result.error is not None:
            self.error = result.error
            if self._window is not None:
                self._target_page = self._window.page_index
            return True
        window = result.value
        if not isinstance(window, RowWindow):
            return False
        self.error = None
        if not window.rows and window.offset > 0 and self._window is not None:
            # Ran past the end of a source with no exact total; stay put.
            logger.debug("Page %s of %s is empty", window.page_index, self._slot)
            self._target_page = self._window.page_index
            self._window = self._mark_last(self._window)
            return True
        self._window = window
        self._target_page = window.page_index
        return True

    @staticmethod
    def _mark_last(window: RowWindow) -> RowWindow:
        return replace(
            window,
            has_more=False,
            total_rows=window.offset + len(window.rows),
            total_is_exact=True,
        )

    def show_window(self, window: RowWindow) -> None:
        """Displays a window that did not come from a fetch, e.g. a statement summary."""
        if self._request_id is not None:
            self._worker.cancel(self._slot)
            self._request_id = None
        self._source = None
        self._window = window
        self._target_page = 0
