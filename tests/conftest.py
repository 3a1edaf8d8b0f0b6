"""Test configuration and fixtures for bookrat tests."""

import os
import sys
import zipfile

import pexpect
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import bookrat  # noqa: E402

BOOKRAT = os.path.join(os.path.dirname(__file__), '..', 'bookrat.py')

CONTAINER_XML = '''<?xml version="1.0"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>'''

CHAPTER_XHTML = '''<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head>
    <title>{title}</title>
    <style>p {{ text-indent: 1em; }}</style>
</head>
<body>
    <h1>{title}</h1>
{body}
</body>
</html>'''


def build_epub(path, chapters, title="Test Book"):
    """Write a minimal EPUB 2 file with one spine item per (title, body) pair."""
    manifest = []
    spine = []
    with zipfile.ZipFile(path, 'w') as epub:
        epub.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        epub.writestr("META-INF/container.xml", CONTAINER_XML)

        for n, (chapter_title, body) in enumerate(chapters, start=1):
            name = "chapter{}.xhtml".format(n)
            manifest.append(
                '<item id="ch{0}" href="{1}" media-type="application/xhtml+xml"/>'.format(n, name))
            spine.append('<itemref idref="ch{}"/>'.format(n))
            epub.writestr("OEBPS/" + name, CHAPTER_XHTML.format(title=chapter_title, body=body))

        content_opf = '''<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="BookId" version="2.0">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>{title}</dc:title>
    <dc:identifier id="BookId">test-book-id</dc:identifier>
    <dc:language>en</dc:language>
  </metadata>
  <manifest>
    {manifest}
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
  </manifest>
  <spine toc="ncx">
    {spine}
  </spine>
</package>'''.format(title=title, manifest="\n    ".join(manifest), spine="\n    ".join(spine))
        epub.writestr("OEBPS/content.opf", content_opf)
        epub.writestr("OEBPS/toc.ncx", '<?xml version="1.0"?><ncx/>')
    return path


SAMPLE_CHAPTERS = [
    ("Cover", "    <p>Test Book</p>"),
    ("Chapter 1: Beginnings",
     "    <p>This is a <em>test</em> paragraph for automated testing.</p>\n"
     "    <p>Second paragraph with <strong>some</strong> content &amp; more.</p>\n"
     "    <p>Third paragraph for scrolling tests.</p>"),
    ("Chapter 2: Endings",
     "    <p>The last chapter&hellip;</p>\n"
     "    <blockquote>A quoted line.</blockquote>"),
]


@pytest.fixture
def book_dir(tmp_path):
    """A directory holding two small books."""
    books = tmp_path / "books"
    books.mkdir()
    build_epub(str(books / "alpha.epub"), SAMPLE_CHAPTERS, title="Alpha")
    build_epub(str(books / "beta.epub"), SAMPLE_CHAPTERS[:1], title="Beta")
    return books


@pytest.fixture
def test_epub(book_dir):
    return str(book_dir / "alpha.epub")


@pytest.fixture
def isolated_home(tmp_path):
    """A fresh $HOME with a .config directory, so bookmarks land in .config/bookrat."""
    home = tmp_path / "home"
    (home / ".config").mkdir(parents=True)
    return home


@pytest.fixture
def bookrat_env(isolated_home):
    env = dict(os.environ)
    env["HOME"] = str(isolated_home)
    env["TERM"] = "xterm"
    env.pop("USERPROFILE", None)
    env.pop("COLUMNS", None)
    env.pop("LINES", None)
    return env


@pytest.fixture
def bookrat_process(book_dir, bookrat_env):
    """Start bookrat browsing the sample book directory."""
    proc = pexpect.spawn(
        sys.executable, [BOOKRAT, str(book_dir)],
        env=bookrat_env, dimensions=(24, 100), timeout=10)

    proc.expect("EPUB Files", timeout=5)

    yield proc

    if proc.isalive():
        proc.terminate(force=True)


class FakeBook:
    """In-memory chapter source; advance() starts failing at fail_after."""

    def __init__(self, chapters, fail_after=None):
        self.chapters = chapters
        self.index = 0
        self.fail_after = fail_after
        self.advance_calls = 0
        self.closed = False

    def chapter_count(self):
        return len(self.chapters)

    def current_chapter_text(self):
        return self.chapters[self.index]

    def advance(self):
        self.advance_calls += 1
        if self.index + 1 >= len(self.chapters):
            return False
        if self.fail_after is not None and self.index >= self.fail_after:
            return False
        self.index += 1
        return True

    def retreat(self):
        if self.index <= 0:
            return False
        self.index -= 1
        return True

    def seek(self, index):
        if not 0 <= index < len(self.chapters):
            return False
        self.index = index
        return True

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


FIVE_CHAPTERS = [
    "<p>Front matter</p>",
    "<p>Chapter one</p><p>It begins.</p>",
    "<p>Chapter two</p>",
    "<p>Chapter three</p>",
    "<p>Chapter four</p>",
]


@pytest.fixture
def store(tmp_path):
    return bookrat.BookmarkStore(str(tmp_path / "bookmarks.json"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def library():
    """Fake books keyed by path; the controller fixture opens from here."""
    return {}


@pytest.fixture
def controller(store, clock, library):
    def opener(path):
        if path not in library:
            raise bookrat.BookError("no such book: " + path)
        return library[path]
    return bookrat.ReadingController(store, opener=opener, clock=clock)


@pytest.fixture
def make_book():
    return FakeBook


@pytest.fixture
def five_chapter_book(library):
    book = FakeBook(list(FIVE_CHAPTERS))
    library["five.epub"] = book
    return book

