"""Тесты командной строки и полного прогона клиента"""
import pytest
from PIL import Image

from errors import ConfigurationError
from main import build_parser, main, resolve_options, run_client
from reconstruction import GREEN, RED, RESET

from conftest import PlainClientOracle, asgi_transport, image_app, solid_image, text_app


def options(*argv):
    return resolve_options(build_parser().parse_args(list(argv)))


@pytest.mark.parametrize("argv", [
    ["--client", "h:1"],
    ["--file", "a.txt"],
    ["--server", "--client", "h:1", "--file", "a.txt"],
    ["--client", "h:1", "--file", "a.txt", "--highlight"],
    ["--client", "h:1", "--file", "a.txt", "--reveal-intersection", "--highlight", "--redact"],
    ["--client", "h:1", "--file", "a.txt", "--split", "sentence"],
    ["--client", "h:1", "--file", "a.txt", "--fpr", "1.5"],
    ["--client", "h:1", "--file", "a.png", "--image", "--reveal-intersection", "--redact"],
    ["--client", "h:1", "--file", "a.txt", "--blank"],
    ["--client", "h:1", "--file", "a.png", "--image", "--incremental"],
    ["--client", "h:1", "--file", "a.txt", "--concurrency", "0"],
    ["--client", "h:1", "--file", "a.txt", "--port", "abc"],
])
def test_invalid_flag_combinations(argv):
    with pytest.raises(ConfigurationError):
        options(*argv)


def test_defaults_from_config():
    args = options("--client", "h:1", "--file", "a.txt")
    assert args.split == "line"
    assert args.concurrency == 10
    assert args.tile_size == 5
    assert args.reveal.value == "size"


def test_config_file_override(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("tile_size: 10\nconcurrency: 3\n")
    args = options("--client", "h:1", "--file", "a.png", "--config", str(path), "--concurrency", "4")
    assert args.tile_size == 10
    assert args.concurrency == 4


def test_main_exit_codes(tmp_path):
    assert main(["--client", "localhost:1"]) == 1
    assert main(["--client", "localhost:1", "--file", str(tmp_path / "missing.txt")]) == 1
    assert main(["--bogus"]) == 1


@pytest.mark.asyncio
async def test_client_highlight_scenario(tmp_path):
    path = tmp_path / "local.txt"
    path.write_text("A\n\nB\nC")
    args = options("--client", "test:1", "--file", str(path), "--reveal-intersection", "--highlight")
    output = await run_client(args, transport=asgi_transport(text_app("B\nC\nD")),
                              oracle=PlainClientOracle())
    assert output == f"{RED}A{RESET}\n\n{GREEN}B{RESET}\n{GREEN}C{RESET}"


@pytest.mark.asyncio
async def test_client_extract_words(tmp_path):
    path = tmp_path / "local.txt"
    path.write_text("shared words here")
    args = options("--client", "test:1", "--file", str(path), "--split", "word",
                   "--reveal-intersection")
    output = await run_client(args, transport=asgi_transport(text_app("shared words", mode='word')),
                              oracle=PlainClientOracle())
    assert output == "shared\n \nwords\n "


@pytest.mark.asyncio
async def test_client_size_only(tmp_path):
    path = tmp_path / "local.txt"
    path.write_text("A\nB\nC")
    args = options("--client", "test:1", "--file", str(path))
    output = await run_client(args, transport=asgi_transport(text_app("B\nC\nD")),
                              oracle=PlainClientOracle())
    assert output == "Intersection size: 2"


@pytest.mark.asyncio
async def test_client_image_incremental(tmp_path):
    server = solid_image(10, 10, (255, 255, 255, 255))
    server[:5, :5] = (30, 60, 90, 255)
    client = solid_image(10, 10, (0, 0, 0, 255))
    client[:5, :5] = (30, 60, 90, 255)
    source = tmp_path / "client.png"
    Image.fromarray(client).save(source)
    output = tmp_path / "out.png"

    args = options("--client", "test:1", "--file", str(source), "--image", "--incremental",
                   "--reveal-intersection", "--output", str(output))
    assert await run_client(args, transport=asgi_transport(image_app(server, 5, incremental=True))) == ''

    with Image.open(output) as image:
        assert image.getpixel((0, 0)) == (30, 60, 90, 255)
        assert image.getpixel((7, 2)) == (30, 60, 90, 255)
        assert image.getpixel((2, 7)) == (30, 60, 90, 255)
        assert image.getpixel((7, 7)) == (255, 255, 255, 255)


@pytest.mark.asyncio
async def test_client_image_bulk_blank(tmp_path):
    server = solid_image(10, 5, (1, 1, 1, 255))
    client = server.copy()
    client[:, 5:] = (9, 9, 9, 255)
    source = tmp_path / "client.png"
    Image.fromarray(client).save(source)
    output = tmp_path / "out.png"

    args = options("--client", "test:1", "--file", str(source), "--image", "--blank",
                   "--reveal-intersection", "--output", str(output))
    await run_client(args, transport=asgi_transport(image_app(server, 5)), oracle=PlainClientOracle())

    with Image.open(output) as image:
        assert image.getpixel((0, 0)) == (1, 1, 1, 255)
        assert image.getpixel((9, 4)) == (0, 0, 0, 0)


@pytest.mark.asyncio
async def test_client_incremental_text_with_extra_lines(tmp_path):
    path = tmp_path / "local.txt"
    path.write_text("A\nB\nC\nD")
    args = options("--client", "test:1", "--file", str(path), "--incremental",
                   "--reveal-intersection", "--highlight")
    output = await run_client(args, transport=asgi_transport(text_app("B\nC\nD", incremental=True)))
    assert output == f"{RED}A{RESET}\n{GREEN}B{RESET}\n{GREEN}C{RESET}\n{GREEN}D{RESET}"
