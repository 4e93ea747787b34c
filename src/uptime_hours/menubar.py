"""Menubar application for macOS showing booked hours and flex-time"""
import rumps as _rumps
import concurrent.futures as _futures

from datetime import timedelta

from . import cli as _cli
from . import core as _core
from . import eventlog as _eventlog
from . import report as _report

# the number of days to display
_ROW_LEN = 7
# menu placeholder for rows that don't exist
_PLACEHOLDER_TEXT = " " * 70
_TITLE = "⏱"


def now_str() -> str:
    return _core.ts_to_str(_cli.now())


def update_formatted_menu_item(menu_item: _rumps.MenuItem, text: str, color=None):
    """Updates the text of a menu item with monospaced text."""
    # Adapted from https://github.com/jaredks/rumps/issues/30#issuecomment-70348881
    from AppKit import NSAttributedString
    from PyObjCTools.Conversion import propertyListFromPythonCollection
    from Cocoa import (
        NSFont,
        NSColor,
        NSFontAttributeName,
        NSForegroundColorAttributeName,
    )

    font = NSFont.fontWithName_size_("Monaco", 12.0)
    if color is None:
        color = NSColor.labelColor()
    attributes = propertyListFromPythonCollection(
        {NSFontAttributeName: font, NSForegroundColorAttributeName: color},
        conversionHelper=lambda x: x,
    )

    string = NSAttributedString.alloc().initWithString_attributes_(text, attributes)
    menu_item._menuitem.setAttributedTitle_(string)


def _emphasis_color(emphasis: _core.FlexEmphasis):
    from Cocoa import NSColor

    if emphasis == _core.FlexEmphasis.AHEAD:
        return NSColor.systemGreenColor()
    if emphasis == _core.FlexEmphasis.BEHIND:
        return NSColor.systemRedColor()
    return None


def formatted_menu_item(text) -> _rumps.MenuItem:
    """Creates a menu item with monospaced text."""
    menu_item = _rumps.MenuItem("")
    update_formatted_menu_item(menu_item, text)
    return menu_item


def fetch_rows(
    settings: _report.ReportSettings,
) -> tuple[list[_report.ReportRow], str]:
    """Reads the power log and returns the most recent rows, newest first, with the title text."""
    current = _cli.now()
    raws = _eventlog.fetch_events(
        _core.provider_filters(), current - timedelta(days=settings.history_days)
    )
    buckets = _core.reconstruct(_core.normalize(raws), current)
    rows = _report.build_report(buckets, settings, newest_first=True)
    if not rows:
        return [], _TITLE
    # the menubar title shows the flex-time of the most recent day
    return rows[:_ROW_LEN], f"{_TITLE} {rows[0].attributes.flex_text}"


class UptimeApp(_rumps.App):
    def __init__(self, settings: _report.ReportSettings | None = None):
        super(UptimeApp, self).__init__(name=_TITLE)
        self.__settings = settings or _report.ReportSettings()

        # setup placeholder menu items
        self.__row_menu_items = []
        for x in range(_ROW_LEN):
            self.__row_menu_items.append(formatted_menu_item(_PLACEHOLDER_TEXT))
        self.__status_menu_item = _rumps.MenuItem("Loading...")
        self.menu.add(self.__status_menu_item)
        self.menu.add(_rumps.separator)
        for menu_item in self.__row_menu_items:
            self.menu.add(menu_item)

        # setup threadpool to read the log
        self.__pool = _futures.ThreadPoolExecutor(max_workers=1)
        self.__run_update()

        # set up UI update
        self.__update_ui_timer = _rumps.Timer(self.__update_ui, 5)
        self.__update_ui_timer.start()

        # set up refresh
        self.__refresh_timer = _rumps.Timer(self.__refresh, 300)
        self.__refresh_timer.start()

    def __run_update(self):
        """Spawns a task to read the power log unconditionally."""
        self.__pending = self.__pool.submit(fetch_rows, self.__settings)

    def __update_ui(self, _: _rumps.Timer):
        if self.__pending is None or not self.__pending.done():
            return
        try:
            rows, title = self.__pending.result()
            date_format = self.__settings.date_format
            for i, menu_item in enumerate(self.__row_menu_items):
                if i < len(rows):
                    row = rows[i]
                    update_formatted_menu_item(
                        menu_item,
                        _report.format_row(row, date_format),
                        _emphasis_color(row.attributes.emphasis),
                    )
                else:
                    update_formatted_menu_item(menu_item, _PLACEHOLDER_TEXT)
            self.title = title
            self.__status_menu_item.title = f"Updated: {now_str()}"
        except Exception as e:
            self.__status_menu_item.title = f"Error: {now_str()} - {str(e)}"
        # reset for refresh
        self.__pending = None

    def __refresh(self, _: _rumps.Timer):
        if self.__pending is not None:
            return
        self.__run_update()


def main():
    UptimeApp().run()


if __name__ == "__main__":
    main()
