from typing import Optional

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from errors import OracleContractViolation, ProtocolError
from server_logic import BulkResponder, TileResponder, parse_tile_request

OCTET_STREAM = "application/octet-stream"


def _not_found():
    return JSONResponse(status_code=404, content={"success": False, "error": "Not found"})


def create_app(bulk: Optional[BulkResponder] = None,
               tiles: Optional[TileResponder] = None) -> FastAPI:
    """
    Собирает HTTP-приложение ответчика.

    Блобы оракула передаются как есть, без разбора. Если вид обмена не
    настроен, его эндпоинт отвечает 404.
    """
    app = FastAPI(title="PSI - Private Set Intersection")
    app.state.bulk = bulk
    app.state.tiles = tiles

    # Битый блоб или индекс вне диапазона
    @app.exception_handler(ProtocolError)
    async def protocol_error_handler(request: Request, exc: ProtocolError):
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    # Отказ движка оракула на стороне сервера
    @app.exception_handler(OracleContractViolation)
    async def oracle_error_handler(request: Request, exc: OracleContractViolation):
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    # Шаг 1: клиент объявляет число элементов и получает setup
    @app.get("/setup")
    def get_setup(request: Request, x_num_elements: Optional[str] = Header(None)):
        responder = request.app.state.bulk
        if responder is None:
            return _not_found()
        return Response(responder.serve_setup(x_num_elements), media_type=OCTET_STREAM)

    # Шаг 2: обработка запроса клиента
    @app.post("/request")
    async def post_request(request: Request):
        responder = request.app.state.bulk
        if responder is None:
            return _not_found()
        data = await request.body()
        response = await run_in_threadpool(responder.process_request, data)
        return Response(response, media_type=OCTET_STREAM)

    # Инкрементальный режим: один элемент на запрос
    @app.post("/get_tile_intersection")
    async def get_tile_intersection(request: Request, tile_idx: Optional[str] = None,
                                    x_num_elements: Optional[str] = Header(None)):
        responder = request.app.state.tiles
        if responder is None:
            return _not_found()
        index, element_count = parse_tile_request(tile_idx, x_num_elements)
        element = await request.body()
        payload = responder.lookup(index, element, element_count)
        if payload is None:
            return Response(status_code=204)
        return Response(payload, media_type=OCTET_STREAM)

    return app


def serve(app: FastAPI, host: str, port: int):
    uvicorn.run(app, host=host, port=port, log_level="info")
