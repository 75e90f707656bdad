"""
Командная строка.

    python main.py --server --file test2a.html --reveal-intersection
    python main.py --client node1.local:5995 --file test2b.html --reveal-intersection --highlight
    python main.py --server --file a.png --image --incremental
    python main.py --client node1.local:5995 --file b.png --image --incremental --reveal-intersection

Результат пишется в stdout, диагностика в stderr. Код выхода 0 при
успехе и 1 при любой фатальной ошибке.
"""
import argparse
import asyncio
import logging
import sys

import config
from api import create_app, serve
from client_logic import BulkInitiator, IncrementalInitiator
from errors import ConfigurationError, PSIError
from observer import ProgressBarObserver
from oracle import OpenMinedClientOracle, OpenMinedServerOracle, RevealMode, SizeOnly
from reconstruction import ReconstructionEngine
from segmenter import SPLIT_MODES, read_image, read_text, segment_image, segment_text
from server_logic import BulkResponder, TileResponder
from transport import HttpTransport, base_url_for

logger = logging.getLogger("psi.main")


class _Parser(argparse.ArgumentParser):
    # Ошибки разбора флагов превращаются в ConfigurationError с кодом выхода 1
    def error(self, message):
        raise ConfigurationError(message, phase="arguments")


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="psi-overlap",
                     description="Private set intersection over text and images")
    parser.add_argument('-s', '--server', action='store_true', help="Run as server")
    parser.add_argument('-c', '--client', metavar='HOST:PORT', help="Run as client and connect to server")
    parser.add_argument('--host', help="Host to bind server to")
    parser.add_argument('-p', '--port', type=int, help="Port to bind server to")
    parser.add_argument('-f', '--file', help="Path to file with data for PSI")
    parser.add_argument('--config', help="Path to config.yaml")
    parser.add_argument('--fpr', type=float, help="False positive rate")
    parser.add_argument('--reveal-intersection', action='store_true',
                        help="Reveal the actual intersection instead of just the size")
    parser.add_argument('--highlight', action='store_true',
                        help="Output the full file with intersection elements in green, the rest in red")
    parser.add_argument('--redact', action='store_true',
                        help="Output the full file with non-intersection elements replaced by filler")
    parser.add_argument('--split', help="Split mode: line, word or char")
    parser.add_argument('--image', action='store_true', help="Treat the file as an image split into tiles")
    parser.add_argument('--tile-size', type=int, help="Tile side in pixels")
    parser.add_argument('--incremental', action='store_true',
                        help="One micro-exchange per element instead of one bulk exchange")
    parser.add_argument('--blank', action='store_true',
                        help="Image mode: leave non-intersecting tiles transparent instead of smoothing")
    parser.add_argument('--concurrency', type=int, help="Incremental mode: parallel requests")
    parser.add_argument('--timeout', type=float, help="Round trip timeout, seconds")
    parser.add_argument('-o', '--output', help="Image mode: output PNG path")
    return parser


def resolve_options(args: argparse.Namespace) -> argparse.Namespace:
    """
    Подставляет значения из конфигурации и проверяет комбинацию флагов
    до любой сетевой активности.
    """
    settings = config.load_config(args.config) if args.config else config.config
    for name in ('host', 'port', 'fpr', 'split', 'tile_size', 'concurrency', 'timeout'):
        if getattr(args, name) is None:
            setattr(args, name, getattr(settings, name))
    args.default_size_hint = settings.default_size_hint
    args.redaction_salt = settings.redaction_salt
    if args.output is None:
        args.output = settings.output_image

    if not args.file:
        raise ConfigurationError("--file is required", phase="arguments")
    if args.server == bool(args.client):
        raise ConfigurationError("Either --server or --client must be specified", phase="arguments")
    if args.split not in SPLIT_MODES:
        raise ConfigurationError(f"Invalid split mode: {args.split}", phase="arguments")
    if not 0 < args.fpr < 1:
        raise ConfigurationError(f"--fpr must be in (0, 1): {args.fpr}", phase="arguments")
    if args.tile_size < 1 or args.concurrency < 1 or args.timeout <= 0:
        raise ConfigurationError("--tile-size, --concurrency and --timeout must be positive",
                                 phase="arguments")
    if args.highlight and args.redact:
        raise ConfigurationError("--highlight and --redact are mutually exclusive", phase="arguments")
    if (args.highlight or args.redact) and not args.reveal_intersection:
        raise ConfigurationError("--highlight/--redact require --reveal-intersection", phase="arguments")
    if args.image and (args.highlight or args.redact):
        raise ConfigurationError("--highlight/--redact apply to text only", phase="arguments")
    if args.blank and not args.image:
        raise ConfigurationError("--blank requires --image", phase="arguments")
    if args.client and args.incremental and not args.reveal_intersection:
        raise ConfigurationError("--incremental reveals per-element membership, "
                                 "it requires --reveal-intersection", phase="arguments")
    args.reveal = RevealMode.MEMBERSHIP if args.reveal_intersection else RevealMode.SIZE
    return args


def load_segmentation(args):
    if args.image:
        pixels = read_image(args.file)
        return segment_image(pixels, args.tile_size, ProgressBarObserver("Tile extraction progress:"))
    return segment_text(read_text(args.file), args.split)


def run_server(args):
    segmentation = load_segmentation(args)
    logger.info(f"Reveal intersection: {args.reveal is RevealMode.MEMBERSHIP}")
    if args.incremental:
        app = create_app(tiles=TileResponder(segmentation))
    else:
        bulk = BulkResponder(OpenMinedServerOracle(args.reveal), segmentation.elements,
                             args.fpr, args.default_size_hint)
        app = create_app(bulk=bulk)
    logger.info(f"Server started on {args.host}:{args.port}")
    serve(app, args.host, args.port)


async def run_client(args, transport: HttpTransport = None, oracle=None) -> str:
    """
    Полный прогон клиента: разбиение, обмен, восстановление.

    :return: текст для stdout (пустая строка, если результат записан в изображение)
    """
    segmentation = load_segmentation(args)
    engine = ReconstructionEngine(args.redaction_salt)
    if transport is None:
        transport = HttpTransport(base_url_for(args.client, args.port), args.timeout)
    logger.info(f"Connecting to server at {transport.base_url}")

    async with transport:
        if args.incremental:
            sink = None
            if args.image:
                engine.begin_image(segmentation)
                sink = engine.place_tile
            initiator = IncrementalInitiator(transport, args.concurrency,
                                             ProgressBarObserver("Tile intersection progress:"), sink)
        else:
            initiator = BulkInitiator(oracle or OpenMinedClientOracle(args.reveal), transport,
                                      args.reveal, ProgressBarObserver("Exchange progress:"))
        result = await initiator.run(segmentation.elements)

    if isinstance(result, SizeOnly):
        return engine.size_report(result)
    if args.image:
        engine.render_image(segmentation, result, 'image-blank' if args.blank else 'image-smooth')
        engine.write_image(args.output)
        return ''
    mode = 'highlight' if args.highlight else 'redact' if args.redact else 'extract'
    logger.info(f"Found {len(result)} elements in the intersection")
    return engine.render_text(segmentation, result, mode)


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )
    try:
        args = resolve_options(build_parser().parse_args(argv))
        if args.server:
            run_server(args)
        else:
            output = asyncio.run(run_client(args))
            if output:
                sys.stdout.write(output + '\n')
    except PSIError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
