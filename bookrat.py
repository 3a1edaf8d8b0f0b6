#!/usr/bin/env python3
"""\
Usages:
    bookrat              browse epub files in current directory
    bookrat DIR          browse epub files in DIR
    bookrat EPUBFILE     open EPUBFILE (its directory is browsed)

Options:
    -r              print reading history
    -d PATH         dump epub (or every epub in directory PATH) as text
    -h, --help      print short, long help
    -v, --version   print version
    --clean         reset to fresh state (delete all bookmarks)
    --debug         write debug log, show position info in title bar

Key Binding:
    Quit             : q
    Select down      : j         DOWN
    Select up        : k         UP
    Open selection   : ENTER
    Switch view      : TAB
    Scroll down      : j         DOWN
    Scroll up        : k         UP
    Next chapter     : l         RIGHT
    Prev chapter     : h         LEFT
    Raw markup       : r
"""


__version__ = "0.3.0"
__build_time__ = "2026-10-18 00:00:00"
__license__ = "MIT"
__author__ = "BookRat contributors"
__email__ = ""
__url__ = "https://github.com/bookrat/bookrat"


import curses
import zipfile
import sys
import re
import os
import shutil
import textwrap
import tempfile
import json
import time
import logging
import xml.etree.ElementTree as ET
from collections import namedtuple
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from urllib.parse import unquote

from pygments import lex
from pygments.lexers import HtmlLexer


# key bindings
NAV_DOWN = {ord("j"), curses.KEY_DOWN}
NAV_UP = {ord("k"), curses.KEY_UP}
CH_NEXT = {ord("l"), curses.KEY_RIGHT}
CH_PREV = {ord("h"), curses.KEY_LEFT}
OPEN = {10, 13, curses.KEY_ENTER}
SWITCH_VIEW = {9}
RAW_VIEW = {ord("r")}
QUIT = {ord("q"), 3}


# layout
LIST_PANE_PERCENT = 30
HELP_BAR_ROWS = 3
MIN_COLS = 40
MIN_ROWS = 10
TICK_MS = 250

HELP_TEXT = {
    "list": "j/k: Navigate | Enter: Select | Tab: Switch View | q: Quit",
    "content": "j/k: Scroll | h/l: Change Chapter | r: Raw View | Tab: Switch View | q: Quit",
}

# scrolling
SCROLL_ACCEL_WINDOW = 0.1  # seconds
MAX_SCROLL_SPEED = 10

# placeholders shown in the content pane
PLACEHOLDER_NO_BOOK = "Select a file to view its content"
PLACEHOLDER_EMPTY = "No content available in this chapter."
PLACEHOLDER_READ_ERROR = "Error reading chapter content."

INDENT = "    "


# some global envs, better leave these alone
BOOKMARKSFILE = ""
LOGFILE = ""
DEBUG_MODE = False
COLORSUPPORT = False
DIM_PAIR = 0
SYNTAX_PAIRS = {}

log = logging.getLogger("bookrat")


# =============================================================================
# CHAPTER SOURCE
# =============================================================================

class BookError(Exception):
    """Raised when an e-book container cannot be opened."""


class Epub:
    NS = {
        "DAISY": "http://www.daisy.org/z3986/2005/ncx/",
        "OPF": "http://www.idpf.org/2007/opf",
        "CONT": "urn:oasis:names:tc:opendocument:xmlns:container",
        "XHTML": "http://www.w3.org/1999/xhtml",
        "EPUB": "http://www.idpf.org/2007/ops"
    }

    def __init__(self, fileepub):
        self.path = fileepub
        self.file = zipfile.ZipFile(fileepub, "r")
        try:
            cont = ET.parse(self.file.open("META-INF/container.xml"))
            self.rootfile = cont.find(
                "CONT:rootfiles/CONT:rootfile",
                self.NS
            ).attrib["full-path"]
        except (KeyError, AttributeError, ET.ParseError):
            self.file.close()
            raise
        self.rootdir = os.path.dirname(self.rootfile)\
            + "/" if os.path.dirname(self.rootfile) != "" else ""
        self.contents = []
        self.index = 0

    def initialize(self):
        cont = ET.parse(self.file.open(self.rootfile)).getroot()
        manifest = {}
        for i in cont.findall("OPF:manifest/*", self.NS):
            # EPUB3 nav document and EPUB2 ncx are navigation, not chapters
            if i.get("media-type") != "application/x-dtbncx+xml"\
               and i.get("properties") != "nav":
                manifest[i.get("id")] = i.get("href")

        for i in cont.findall("OPF:spine/*", self.NS):
            href = manifest.get(i.get("idref"))
            if href is not None:
                self.contents.append(self.rootdir + unquote(href))
        self.index = 0

    def chapter_count(self):
        return len(self.contents)

    def current_chapter_text(self):
        """Raw markup of the chapter under the pointer, or None if unreadable."""
        if not self.contents:
            return None
        chpath = self.contents[self.index]
        try:
            content = self.file.open(chpath).read()
            return content.decode("utf-8-sig")
        except (KeyError, OSError, UnicodeDecodeError, zipfile.BadZipFile) as e:
            log.error("Failed to read chapter %s: %s", chpath, e)
            return None

    def advance(self):
        if self.index + 1 >= len(self.contents):
            return False
        self.index += 1
        return True

    def retreat(self):
        if self.index <= 0:
            return False
        self.index -= 1
        return True

    def seek(self, index):
        if not 0 <= index < len(self.contents):
            return False
        self.index = index
        return True

    def close(self):
        self.file.close()


def open_book(path):
    """Open and index an EPUB, raising BookError on any container problem."""
    try:
        epub = Epub(path)
    except (OSError, KeyError, AttributeError, zipfile.BadZipFile, ET.ParseError) as e:
        raise BookError("cannot open {}: {}".format(path, e)) from e
    try:
        epub.initialize()
    except (KeyError, AttributeError, ET.ParseError) as e:
        epub.close()
        raise BookError("cannot read package of {}: {}".format(path, e)) from e
    return epub


def find_books(directory):
    """Sorted paths of the .epub files directly inside directory."""
    try:
        names = os.listdir(directory)
    except OSError as e:
        log.error("Cannot list %s: %s", directory, e)
        return []
    books = []
    for name in sorted(names):
        path = os.path.join(directory, name)
        if name.lower().endswith(".epub") and os.path.isfile(path):
            books.append(path)
    return books


# =============================================================================
# MARKUP PIPELINE
# =============================================================================

ENTITIES = {
    "&nbsp;": " ",
    "&#160;": " ",
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": "\"",
    "&apos;": "'",
    "&#39;": "'",
    "&ndash;": "–",
    "&mdash;": "—",
    "&hellip;": "...",
    "&lsquo;": "‘",
    "&rsquo;": "’",
    "&ldquo;": "“",
    "&rdquo;": "”",
}

ENTITY_RE = re.compile("|".join(re.escape(i) for i in ENTITIES))

HIDDEN_BLOCK_RE = re.compile(
    r"<!--.*?-->|<(head|style|script)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL
)
CSS_RULE_RE = re.compile(r"[a-zA-Z0-9#.@]+\s*\{[^}]*\}")
H_OPEN_RE = re.compile(r"<h[1-6][^>]*>", re.IGNORECASE)
H_CLOSE_RE = re.compile(r"</h[1-6]\s*>", re.IGNORECASE)
MULTI_SPACE_RE = re.compile(r"[ \t\f\v]+")
LINE_LEADING_SPACE_RE = re.compile(r"^ +", re.MULTILINE)
# a paragraph boundary swallows the close tag of the paragraph before it
P_BOUNDARY_RE = re.compile(r"(?:</p\s*>\s*)?<p(?:[\s/][^>]*)?>", re.IGNORECASE)
TAG_SUBSTITUTIONS = (
    (re.compile(r"</p\s*>", re.IGNORECASE), "\n"),
    (re.compile(r"<br(?:[\s/][^>]*)?>", re.IGNORECASE), "\n"),
    (re.compile(r"<blockquote(?:\s[^>]*)?>", re.IGNORECASE), "\n" + INDENT),
    (re.compile(r"</blockquote\s*>", re.IGNORECASE), "\n"),
    (re.compile(r"</?(?:em|i)(?:\s[^>]*)?>", re.IGNORECASE), "_"),
    (re.compile(r"</?(?:strong|b)(?:\s[^>]*)?>", re.IGNORECASE), "**"),
)
EMPHASIS_RE = re.compile(r"_([^_]+)_")
REMAINING_TAG_RE = re.compile(r"<[^<>\n]*>")
TRAILING_SPACE_RE = re.compile(r"[ \t]+$", re.MULTILINE)
MULTI_NEWLINE_RE = re.compile(r"\n{3,}")


def decode_entities(text):
    """Translate the fixed entity table in one pass; output is never rescanned."""
    return ENTITY_RE.sub(lambda m: ENTITIES[m.group()], text)


def strip_style_rules(text):
    text = HIDDEN_BLOCK_RE.sub("", text)
    return CSS_RULE_RE.sub("", text)


def mark_headers(text):
    text = H_OPEN_RE.sub("\n", text)
    return H_CLOSE_RE.sub("\n", text)


def collapse_spaces(text):
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = MULTI_SPACE_RE.sub(" ", text)
    return LINE_LEADING_SPACE_RE.sub("", text)


def mark_paragraphs(text):
    """First paragraph opens flush, every later one on a new indented line."""
    pieces = []
    last = 0
    first = True
    for match in P_BOUNDARY_RE.finditer(text):
        pieces.append(text[last:match.start()])
        if not first:
            pieces.append("\n" + INDENT)
        first = False
        last = match.end()
    pieces.append(text[last:])
    return "".join(pieces)


def substitute_tags(text):
    for pattern, replacement in TAG_SUBSTITUTIONS:
        text = pattern.sub(replacement, text)
    return text


def balance_emphasis(text):
    # doubled runs such as __init__ pass through untouched
    return EMPHASIS_RE.sub(r"_\1_", text)


def strip_tags(text):
    return REMAINING_TAG_RE.sub("", text)


def collapse_whitespace(text):
    """At most one blank line in a row, no trailing blanks, trimmed ends."""
    text = TRAILING_SPACE_RE.sub("", text)
    text = MULTI_NEWLINE_RE.sub("\n\n", text)
    return text.strip()


# order matters: entities are decoded only after every tag is gone so a
# decoded &lt; can never be taken for markup
PIPELINE = (
    strip_style_rules,
    mark_headers,
    collapse_spaces,
    mark_paragraphs,
    substitute_tags,
    balance_emphasis,
    strip_tags,
    decode_entities,
    collapse_whitespace,
)


def normalize(raw):
    """Turn chapter markup into intermediate text with _ and ** sentinels.

    Returns an empty string when nothing readable is left; the caller decides
    what to show instead.
    """
    text = raw
    for step in PIPELINE:
        text = step(text)
    return text


# =============================================================================
# INLINE STYLES
# =============================================================================

StyledRun = namedtuple("StyledRun", ["text", "italic", "bold"])


class InlineStyleTokenizer:
    """Split intermediate text lines into styled runs.

    The italic/bold flags carry over from one line to the next, so a whole
    chapter has to be fed in order after a reset().
    """

    def __init__(self):
        self.italic = False
        self.bold = False

    def reset(self):
        self.italic = False
        self.bold = False

    def _flush(self, runs, chars):
        if chars:
            runs.append(StyledRun("".join(chars), self.italic, self.bold))
            del chars[:]

    def tokenize(self, line):
        runs = []
        chars = []
        i = 0
        while i < len(line):
            ch = line[i]
            if ch == "_":
                self._flush(runs, chars)
                self.italic = not self.italic
            elif ch == "*" and line.startswith("**", i):
                self._flush(runs, chars)
                self.bold = not self.bold
                i += 1
            else:
                chars.append(ch)
            i += 1
        self._flush(runs, chars)
        return runs


def plain_text(tokenizer, line):
    return "".join(run.text for run in tokenizer.tokenize(line))


# =============================================================================
# PROGRESS
# =============================================================================

def wrap_content(content, width):
    lines = []
    width = max(1, width)
    for line in content.split("\n"):
        if line.strip():
            lines += textwrap.wrap(line, width, break_long_words=False, break_on_hyphens=True)
        else:
            lines.append("")
    return lines


def percent(content, width, height, scroll_offset):
    max_scroll = len(wrap_content(content, width)) - height
    if max_scroll <= 0:
        return 100
    # half rounds up
    return min(100, int(100 * scroll_offset / max_scroll + 0.5))


# =============================================================================
# BOOKMARKS
# =============================================================================

class BookmarkError(ValueError):
    """Raised when the bookmark file exists but cannot be understood."""


class Bookmark:
    def __init__(self, chapter_index, scroll_offset, last_read):
        self.chapter_index = chapter_index
        self.scroll_offset = scroll_offset
        self.last_read = last_read

    def to_dict(self):
        return {
            "chapter": self.chapter_index,
            "scroll_offset": self.scroll_offset,
            "last_read": self.last_read.isoformat(),
        }

    @classmethod
    def from_dict(cls, data):
        chapter = int(data["chapter"])
        offset = int(data["scroll_offset"])
        if chapter < 0 or offset < 0:
            raise ValueError("negative position {}/{}".format(chapter, offset))
        last_read = datetime.fromisoformat(data["last_read"])
        if last_read.tzinfo is None:
            last_read = last_read.replace(tzinfo=timezone.utc)
        return cls(chapter, offset, last_read)


class BookmarkStore:
    """Last reading position per book, kept in a single JSON file."""

    def __init__(self, path, books=None):
        self.path = path
        self.books = books if books is not None else {}

    @classmethod
    def load(cls, path):
        if not os.path.exists(path):
            return cls(path)
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
        if not content.strip():
            return cls(path)
        try:
            data = json.loads(content)
            books = {
                key: Bookmark.from_dict(value)
                for key, value in data["books"].items()
            }
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise BookmarkError("corrupt bookmark file {}: {}".format(path, e)) from e
        return cls(path, books)

    def get(self, book_id):
        return self.books.get(book_id)

    def update(self, book_id, chapter_index, scroll_offset):
        self.books[book_id] = Bookmark(
            chapter_index, scroll_offset, datetime.now(timezone.utc)
        )

    def save(self):
        if self.path == os.devnull:
            return
        data = {"books": {key: b.to_dict() for key, b in self.books.items()}}
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmppath = tempfile.mkstemp(dir=directory, prefix=".bookmarks-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4, ensure_ascii=False)
            os.replace(tmppath, self.path)
        except OSError:
            if os.path.exists(tmppath):
                os.remove(tmppath)
            raise

    def last_read(self, book_id):
        bookmark = self.books.get(book_id)
        if bookmark is None:
            return "Never"
        return bookmark.last_read.astimezone().strftime("%Y-%m-%d %H:%M")

    def history(self):
        """(book_id, bookmark) pairs, most recently read first."""
        return sorted(self.books.items(), key=lambda i: i[1].last_read, reverse=True)


def load_bookmark_store(path):
    try:
        return BookmarkStore.load(path)
    except (BookmarkError, OSError) as e:
        log.error("Failed to load bookmarks: %s", e)
        return BookmarkStore(path)


# =============================================================================
# READING POSITION
# =============================================================================

class ReaderPosition:
    def __init__(self, total_chapters, chapter_index=0, scroll_offset=0):
        self.chapter_index = chapter_index
        self.total_chapters = total_chapters
        self.scroll_offset = scroll_offset
        self.scroll_speed = 1


class ReadingController:
    """Owns the open book, the reader position and the rendered chapter text.

    Every method that can fail on the chapter source logs and leaves the
    position as it was; nothing here raises into the UI loop.
    """

    def __init__(self, bookmarks, opener=open_book, clock=time.monotonic):
        self.bookmarks = bookmarks
        self.opener = opener
        self.clock = clock
        self.book = None
        self.book_id = None
        self.position = None
        self.content = None
        self.last_scroll_time = None
        self.tokenizer = InlineStyleTokenizer()
        self._styled = None

    @property
    def is_reading(self):
        return self.book is not None

    def open_book(self, path):
        log.info("Attempting to load EPUB: %s", path)
        try:
            book = self.opener(path)
        except BookError as e:
            log.error("Failed to load EPUB: %s", e)
            return False

        total = book.chapter_count()
        if total == 0:
            log.error("EPUB has no chapters: %s", path)
            book.close()
            return False
        log.info("Total chapters: %d", total)

        self.close()
        self.book = book
        self.book_id = path
        self.position = ReaderPosition(total)
        self.last_scroll_time = None

        bookmark = self.bookmarks.get(path)
        if bookmark is not None:
            self._restore(bookmark)
        elif total > 1:
            # first spine item is usually a cover or title page
            if book.advance():
                self.position.chapter_index = 1
                log.info("Skipped metadata page, moved to chapter 2")
            else:
                log.error("Failed to move past first chapter")

        self._regenerate_content()
        return True

    def _restore(self, bookmark):
        log.info("Found bookmark: chapter %d, offset %d",
                 bookmark.chapter_index, bookmark.scroll_offset)
        for step in range(bookmark.chapter_index):
            if not self.book.advance():
                log.error("Failed to navigate to bookmarked chapter %d (stopped at %d)",
                          bookmark.chapter_index, step)
                fallback = 1 if self.position.total_chapters > 1 else 0
                if not self.book.seek(fallback):
                    log.error("Failed to seek back to chapter %d", fallback)
                self.position.chapter_index = fallback
                self.position.scroll_offset = 0
                return
        self.position.chapter_index = bookmark.chapter_index
        self.position.scroll_offset = bookmark.scroll_offset

    def _regenerate_content(self):
        raw = self.book.current_chapter_text()
        if raw is None:
            log.error("Failed to get current chapter content")
            self.content = PLACEHOLDER_READ_ERROR
        else:
            log.debug("Raw content length: %d bytes", len(raw))
            text = normalize(raw)
            log.debug("Text after cleanup: %s", text[:100])
            if not text:
                log.warning("Converted text is empty")
                self.content = PLACEHOLDER_EMPTY
            else:
                self.content = text
        self.tokenizer.reset()
        self._styled = None

    def next_chapter(self):
        if not self.is_reading:
            log.info("No book open")
            return False
        if self.position.chapter_index >= self.position.total_chapters - 1:
            log.info("Already at last chapter")
            return False
        if not self.book.advance():
            log.error("Failed to move to next chapter")
            return False
        self.position.chapter_index += 1
        log.info("Moving to next chapter: %d", self.position.chapter_index + 1)
        self.position.scroll_offset = 0
        self._regenerate_content()
        self.save_bookmark()
        return True

    def prev_chapter(self):
        if not self.is_reading:
            log.info("No book open")
            return False
        if self.position.chapter_index <= 0:
            log.info("Already at first chapter")
            return False
        if not self.book.retreat():
            log.error("Failed to move to previous chapter")
            return False
        self.position.chapter_index -= 1
        log.info("Moving to previous chapter: %d", self.position.chapter_index + 1)
        self.position.scroll_offset = 0
        self._regenerate_content()
        self.save_bookmark()
        return True

    def _accelerate(self):
        now = self.clock()
        if self.last_scroll_time is not None\
           and now - self.last_scroll_time < SCROLL_ACCEL_WINDOW:
            self.position.scroll_speed = min(MAX_SCROLL_SPEED, self.position.scroll_speed + 1)
        else:
            self.position.scroll_speed = 1
        self.last_scroll_time = now

    def scroll_down(self):
        if not self.is_reading or not self.content:
            return False
        self._accelerate()
        self.position.scroll_offset += self.position.scroll_speed
        log.debug("Scrolling down to offset: %d", self.position.scroll_offset)
        self.save_bookmark()
        return True

    def scroll_up(self):
        if not self.is_reading or not self.content:
            return False
        self._accelerate()
        self.position.scroll_offset = max(0, self.position.scroll_offset - self.position.scroll_speed)
        log.debug("Scrolling up to offset: %d", self.position.scroll_offset)
        self.save_bookmark()
        return True

    def save_bookmark(self):
        if self.book_id is None:
            return
        self.bookmarks.update(self.book_id, self.position.chapter_index, self.position.scroll_offset)
        try:
            self.bookmarks.save()
        except OSError as e:
            log.error("Failed to save bookmark: %s", e)

    def styled_lines(self, width):
        """Wrapped chapter rows as styled runs, rebuilt when the width changes."""
        if self._styled is None or self._styled[0] != width:
            self.tokenizer.reset()
            rows = [self.tokenizer.tokenize(line) for line in wrap_content(self.content, width)]
            self._styled = (width, rows)
        return self._styled[1]

    def progress(self, width, height):
        return percent(self.content, width, height, self.position.scroll_offset)

    def raw_content(self):
        if not self.is_reading:
            return PLACEHOLDER_NO_BOOK
        raw = self.book.current_chapter_text()
        if raw is None:
            return PLACEHOLDER_READ_ERROR
        return raw

    def close(self):
        if self.book is not None:
            self.book.close()
            self.book = None


# =============================================================================
# RAW MARKUP HIGHLIGHTING
# =============================================================================

TOKEN_COLORS = {
    "Name.Tag": curses.COLOR_BLUE,
    "Name.Attribute": curses.COLOR_YELLOW,
    "Name.Entity": curses.COLOR_MAGENTA,
    "Literal.String": curses.COLOR_GREEN,
    "Comment": curses.COLOR_CYAN,
    "Comment.Preproc": curses.COLOR_CYAN,
    "Punctuation": curses.COLOR_BLUE,
    "Operator": curses.COLOR_YELLOW,
    "Error": curses.COLOR_RED,
}


def token_color(token_type):
    """Map a pygments token type to a curses color, None for plain text."""
    token_str = str(token_type)
    if token_str.startswith("Token."):
        token_str = token_str[6:]

    if token_str in TOKEN_COLORS:
        return TOKEN_COLORS[token_str]

    # e.g. "Literal.String.Double" -> "Literal.String"
    for pattern, color in TOKEN_COLORS.items():
        if token_str.startswith(pattern):
            return color
    return None


def highlight_markup(markup):
    """Split markup into rows of (text, color) pieces."""
    rows = [[]]
    for token_type, value in lex(markup, HtmlLexer(stripnl=False)):
        color = token_color(token_type)
        parts = value.expandtabs(4).split("\n")
        for n, part in enumerate(parts):
            if n > 0:
                rows.append([])
            if part:
                rows[-1].append((part, color))
    if len(rows) > 1 and not rows[-1]:
        rows.pop()
    return rows


# =============================================================================
# SCREEN
# =============================================================================

class View:
    """Which pane has focus and where the list selection is."""

    def __init__(self, books):
        self.books = books
        self.selected = 0
        self.mode = "list"
        self.raw = False
        self.raw_rows = []
        self.raw_offset = 0


def init_colors(stdscr):
    global COLORSUPPORT, DIM_PAIR
    try:
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(1, -1, -1)
        pair = 2
        for color in sorted(set(TOKEN_COLORS.values())):
            curses.init_pair(pair, color, -1)
            SYNTAX_PAIRS[color] = pair
            pair += 1
        # bright black is dark gray on 16 color terminals
        curses.init_pair(pair, 8 if curses.COLORS >= 16 else curses.COLOR_WHITE, -1)
        DIM_PAIR = pair
        stdscr.bkgd(curses.color_pair(1))
        COLORSUPPORT = True
    except curses.error:
        COLORSUPPORT = False


def color_attr(color):
    if not COLORSUPPORT or color is None:
        return curses.A_NORMAL
    return curses.color_pair(SYNTAX_PAIRS[color])


def dim_attr():
    if COLORSUPPORT:
        return curses.color_pair(DIM_PAIR)
    return curses.A_DIM


def addstr(win, y, x, text, attr=0):
    """addstr clipped to the inside of a boxed window; curses raises on the last cell."""
    rows, cols = win.getmaxyx()
    if y < 0 or y >= rows or x >= cols - 1:
        return
    text = text[:cols - 1 - x]
    if not text:
        return
    try:
        win.addstr(y, x, text, attr)
    except curses.error:
        pass


def draw_box(win, title):
    win.box()
    rows, cols = win.getmaxyx()
    addstr(win, 0, 2, title[:max(0, cols - 4)], curses.A_BOLD)


def draw_file_list(win, view, controller):
    draw_box(win, "EPUB Files")
    rows, cols = win.getmaxyx()
    inner_rows = rows - 2
    if inner_rows <= 0:
        return
    top = max(0, view.selected - inner_rows + 1)
    for row, path in enumerate(view.books[top:top + inner_rows]):
        n = top + row
        name = os.path.splitext(os.path.basename(path))[0]
        stamp = " ({})".format(controller.bookmarks.last_read(path))
        if n == view.selected:
            line = (name + stamp).ljust(cols - 2)
            addstr(win, row + 1, 1, line, curses.A_REVERSE)
        else:
            addstr(win, row + 1, 1, name)
            addstr(win, row + 1, 1 + len(name), stamp, dim_attr())


def content_title(controller, width, height):
    if not controller.is_reading:
        return "Content"
    pos = controller.position
    title = "Content (Chapter {}/{}) - {}%".format(
        pos.chapter_index + 1, pos.total_chapters, controller.progress(width, height)
    )
    if DEBUG_MODE:
        title += " [offset {} speed {}]".format(pos.scroll_offset, pos.scroll_speed)
    return title


def draw_content(win, view, controller):
    rows, cols = win.getmaxyx()
    inner_rows, inner_cols = rows - 2, cols - 2
    if inner_rows <= 0 or inner_cols <= 0:
        draw_box(win, "Content")
        return
    draw_box(win, content_title(controller, inner_cols, inner_rows))

    if view.raw:
        for row, pieces in enumerate(view.raw_rows[view.raw_offset:view.raw_offset + inner_rows]):
            x = 1
            for text, color in pieces:
                addstr(win, row + 1, x, text, color_attr(color))
                x += len(text)
        return

    if not controller.is_reading:
        for row, line in enumerate(wrap_content(PLACEHOLDER_NO_BOOK, inner_cols)[:inner_rows]):
            addstr(win, row + 1, 1, line)
        return

    italic = getattr(curses, "A_ITALIC", curses.A_UNDERLINE)
    offset = controller.position.scroll_offset
    for row, runs in enumerate(controller.styled_lines(inner_cols)[offset:offset + inner_rows]):
        x = 1
        for run in runs:
            attr = curses.A_NORMAL
            if run.italic:
                attr |= italic
            if run.bold:
                attr |= curses.A_BOLD
            addstr(win, row + 1, x, run.text, attr)
            x += len(run.text)


def draw(stdscr, view, controller):
    rows, cols = stdscr.getmaxyx()
    stdscr.erase()
    body_rows = rows - HELP_BAR_ROWS
    list_cols = cols * LIST_PANE_PERCENT // 100
    if body_rows > 2 and list_cols > 2:
        draw_file_list(stdscr.derwin(body_rows, list_cols, 0, 0), view, controller)
        draw_content(stdscr.derwin(body_rows, cols - list_cols, 0, list_cols), view, controller)
    if rows >= HELP_BAR_ROWS:
        bar = stdscr.derwin(HELP_BAR_ROWS, cols, rows - HELP_BAR_ROWS, 0)
        bar.box()
        addstr(bar, 1, 2, HELP_TEXT[view.mode], dim_attr())
    stdscr.refresh()


def refresh_raw(view, controller):
    view.raw_rows = highlight_markup(controller.raw_content())
    view.raw_offset = 0


def handle_key(key, view, controller):
    """Apply one key press; returns False when the reader should exit."""
    if key in QUIT:
        return False

    if view.mode == "list":
        if key in NAV_DOWN:
            if view.selected < len(view.books) - 1:
                view.selected += 1
        elif key in NAV_UP:
            if view.selected > 0:
                view.selected -= 1
        elif key in OPEN:
            if view.books and controller.open_book(view.books[view.selected]):
                view.mode = "content"
                view.raw = False
        elif key in SWITCH_VIEW:
            view.mode = "content"
        return True

    if key in NAV_DOWN:
        if view.raw:
            view.raw_offset = min(view.raw_offset + 1, max(0, len(view.raw_rows) - 1))
        else:
            controller.scroll_down()
    elif key in NAV_UP:
        if view.raw:
            view.raw_offset = max(0, view.raw_offset - 1)
        else:
            controller.scroll_up()
    elif key in CH_NEXT:
        if controller.next_chapter() and view.raw:
            refresh_raw(view, controller)
    elif key in CH_PREV:
        if controller.prev_chapter() and view.raw:
            refresh_raw(view, controller)
    elif key in RAW_VIEW:
        view.raw = not view.raw
        if view.raw:
            refresh_raw(view, controller)
    elif key in SWITCH_VIEW:
        # put the selection back on the book being read
        if controller.book_id in view.books:
            view.selected = view.books.index(controller.book_id)
        view.mode = "list"
    return True


def run(stdscr, directory, initial=None):
    init_colors(stdscr)
    stdscr.keypad(True)
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.timeout(TICK_MS)

    store = load_bookmark_store(BOOKMARKSFILE)
    view = View(find_books(directory))
    controller = ReadingController(store)

    if initial is not None and initial in view.books:
        view.selected = view.books.index(initial)
        if controller.open_book(initial):
            view.mode = "content"

    try:
        while True:
            draw(stdscr, view, controller)
            key = stdscr.getch()
            if key == -1 or key == curses.KEY_RESIZE:
                continue
            if not handle_key(key, view, controller):
                break
    finally:
        controller.close()


# =============================================================================
# STARTUP
# =============================================================================

def resolve_paths():
    global BOOKMARKSFILE, LOGFILE
    if os.getenv("HOME") is not None:
        home = os.getenv("HOME")
        if os.path.isdir(os.path.join(home, ".config")):
            configdir = os.path.join(home, ".config", "bookrat")
            os.makedirs(configdir, exist_ok=True)
            BOOKMARKSFILE = os.path.join(configdir, "bookmarks.json")
            LOGFILE = os.path.join(configdir, "bookrat.log")
        else:
            BOOKMARKSFILE = os.path.join(home, ".bookrat_bookmarks.json")
            LOGFILE = os.path.join(home, ".bookrat.log")
    elif os.getenv("USERPROFILE") is not None:
        BOOKMARKSFILE = os.path.join(os.getenv("USERPROFILE"), ".bookrat_bookmarks.json")
        LOGFILE = os.path.join(os.getenv("USERPROFILE"), ".bookrat.log")
    else:
        BOOKMARKSFILE = os.devnull
        LOGFILE = os.devnull


def setup_logging(debug=False):
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()
    log.propagate = False
    if LOGFILE in ("", os.devnull):
        log.addHandler(logging.NullHandler())
        return
    handler = RotatingFileHandler(LOGFILE, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    log.addHandler(handler)
    log.setLevel(logging.DEBUG if debug else logging.INFO)


def dump_lines(path):
    """Every chapter of a book (or of each book in a directory) as plain text."""
    books = find_books(path) if os.path.isdir(path) else [path]
    lines = []
    tokenizer = InlineStyleTokenizer()
    for book_path in books:
        try:
            book = open_book(book_path)
        except BookError as e:
            if not os.path.isdir(path):
                raise
            log.error("Skipping %s: %s", book_path, e)
            continue
        try:
            for index in range(book.chapter_count()):
                book.seek(index)
                raw = book.current_chapter_text()
                text = normalize(raw) if raw is not None else ""
                if not text:
                    continue
                tokenizer.reset()
                lines += [plain_text(tokenizer, line) for line in text.split("\n")]
                lines.append("")
        finally:
            book.close()
    return lines


def print_history(store):
    entries = store.history()
    if not entries:
        print("No reading history.")
        return
    print("Reading history:")
    dig = len(str(len(entries)))
    for n, (book_id, bookmark) in enumerate(entries):
        print("{}  {}  chapter {}, line {}  ({})".format(
            str(n + 1).rjust(dig), book_id, bookmark.chapter_index + 1,
            bookmark.scroll_offset, store.last_read(book_id)))


def clean_state():
    cleaned_files = []
    bookmark_locations = []
    for env in ("HOME", "USERPROFILE"):
        if os.getenv(env):
            bookmark_locations.append(os.path.join(os.getenv(env), ".bookrat_bookmarks.json"))
            bookmark_locations.append(
                os.path.join(os.getenv(env), ".config", "bookrat", "bookmarks.json"))

    for bookmark_file in bookmark_locations:
        if os.path.exists(bookmark_file):
            try:
                os.remove(bookmark_file)
                cleaned_files.append(bookmark_file)
            except OSError as e:
                print(f"Warning: Could not remove {bookmark_file}: {e}")

    if cleaned_files:
        print("Removed the following bookmark files:")
        for f in cleaned_files:
            print(f"  - {f}")
    else:
        print("No bookmark files found. BookRat is already in a fresh state.")


def main():
    global DEBUG_MODE

    args = sys.argv[1:]

    if len({"-h", "--help"} & set(args)) != 0:
        hlp = __doc__.rstrip()
        if "-h" in args:
            hlp = re.search("(\n|.)*(?=\n\nKey)", hlp).group()
        print(hlp)
        sys.exit()

    if len({"-v", "--version", "-V"} & set(args)) != 0:
        print(__version__)
        print(__license__, "License")
        print(__url__)
        sys.exit()

    if "--clean" in args:
        clean_state()
        sys.exit()

    DEBUG_MODE = "--debug" in args
    if DEBUG_MODE:
        args.remove("--debug")

    resolve_paths()
    setup_logging(DEBUG_MODE)

    if "-r" in args:
        print_history(load_bookmark_store(BOOKMARKSFILE))
        sys.exit()

    if "-d" in args:
        args.remove("-d")
        if not args:
            sys.exit("ERROR: -d needs an epub file or directory.")
        try:
            lines = dump_lines(args[0])
        except BookError as e:
            sys.exit("ERROR: {}".format(e))
        for j in lines:
            sys.stdout.buffer.write((j + "\n").encode("utf-8"))
        sys.exit()

    initial = None
    directory = args[0] if args else "."
    if os.path.isfile(directory):
        initial = directory
        directory = os.path.dirname(directory) or "."
        initial = os.path.join(directory, os.path.basename(initial))
    elif not os.path.isdir(directory):
        sys.exit("ERROR: No such file or directory: {}".format(directory))

    termc, termr = shutil.get_terminal_size()
    if termc < MIN_COLS or termr < MIN_ROWS:
        sys.exit("ERR: Screen was too small (min {}cols x {}rows).".format(MIN_COLS, MIN_ROWS))

    log.info("Starting BookRat EPUB reader")
    curses.wrapper(run, directory, initial)
    log.info("Shutting down BookRat")


if __name__ == "__main__":
    main()
