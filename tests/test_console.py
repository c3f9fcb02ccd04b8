import io
from concurrent.futures import ThreadPoolExecutor

from xvfs.console import INPUT_BUF, Console


def make():
    out = io.StringIO()
    return Console(out), out


def test_line_is_echoed_and_read():
    con, out = make()
    con.interrupt("hi\n")
    assert out.getvalue() == "hi\n"
    assert con.read(10) == b"hi\n"


def test_read_stops_after_each_line():
    con, _ = make()
    con.interrupt("a\nb\n")
    assert con.read(10) == b"a\n"
    assert con.read(10) == b"b\n"


def test_read_respects_count():
    con, _ = make()
    con.interrupt("abcdef\n")
    assert con.read(2) == b"ab"
    assert con.read(10) == b"cdef\n"


def test_backspace_erases():
    con, out = make()
    con.interrupt("ab\x7fc\n")
    assert con.read(10) == b"ac\n"
    assert "\b \b" in out.getvalue()


def test_backspace_on_empty_line_does_nothing():
    con, out = make()
    con.interrupt("\x08")
    assert out.getvalue() == ""


def test_kill_line():
    con, _ = make()
    con.interrupt("abc\x15d\n")
    assert con.read(10) == b"d\n"


def test_carriage_return_becomes_newline():
    con, _ = make()
    con.interrupt("x\r")
    assert con.read(10) == b"x\n"


def test_end_of_input():
    con, _ = make()
    con.interrupt("ab\x04")
    assert con.read(10) == b"ab"
    assert con.read(10) == b""


def test_full_buffer_becomes_readable():
    con, _ = make()
    con.interrupt("a" * (INPUT_BUF + 5))
    assert con.read(INPUT_BUF) == b"a" * INPUT_BUF


def test_procdump_requested():
    con, out = make()
    calls = []
    con.on_procdump = lambda: calls.append(1)
    con.interrupt("\x10")
    assert calls == [1]
    assert out.getvalue() == ""


def test_blocked_reader_is_woken():
    con, _ = make()
    with ThreadPoolExecutor(max_workers=1) as pool:
        pending = pool.submit(con.read, 10)
        con.interrupt("go\n")
        assert pending.result(timeout=5) == b"go\n"


def test_write_reaches_output():
    con, out = make()
    assert con.write(b"text") == 4
    assert out.getvalue() == "text"


def test_printf():
    con, out = make()
    text = con.printf("%d %x %s %%", -5, 255, None)
    assert text == "-5 ff (null) %"
    assert out.getvalue() == text


def test_printf_unknown_conversion_kept():
    con, _ = make()
    assert con.printf("%q") == "%q"