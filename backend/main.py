import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from smartreader import __version__
from smartreader.routers import library
from smartreader.services.kv_store_service import KeyValueStoreService
from smartreader.services.library_books_service import (
    TRASH_RETENTION_DAYS,
    LibraryBooksService,
)
from smartreader.services.library_index_service import LibraryIndexService
from smartreader.services.workers import WorkerHost

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("SMARTREADER_DB_PATH", "data/smartreader.db")
EPUB_DIR = os.getenv("SMARTREADER_EPUB_DIR", "epubs")
WORKERS = int(os.getenv("SMARTREADER_WORKERS", "4"))

books_service = LibraryBooksService(db_path=DB_PATH, epub_dir=EPUB_DIR)
index_service = LibraryIndexService(
    books_service,
    KeyValueStoreService(db_path=DB_PATH),
    host=WorkerHost(max_workers=WORKERS),
)
library.configure(books_service, index_service)


@asynccontextmanager
async def lifespan(app: FastAPI):
    purged = books_service.purge_expired_trash(TRASH_RETENTION_DAYS)
    backfilled = books_service.backfill_legacy_books()
    logger.info(f"Startup maintenance - purged: {purged}, backfilled: {len(backfilled)}")
    try:
        await index_service.refresh_indexes()
    except Exception as e:
        logger.error(f"Initial index refresh failed: {e}", exc_info=True)
    yield
    index_service.shutdown()


app = FastAPI(title="SmartReader Library API", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = datetime.now()
    logger.info(f">>> Incoming request: {request.method} {request.url.path}")

    try:
        response = await call_next(request)
        duration = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"<<< Response: {request.method} {request.url.path} - Status: {response.status_code} - Duration: {duration:.3f}s"
        )
        return response
    except Exception as e:
        duration = (datetime.now() - start_time).total_seconds()
        logger.error(
            f"!!! Request failed: {request.method} {request.url.path} - Duration: {duration:.3f}s - Error: {str(e)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500, content={"detail": f"Internal server error: {str(e)}"}
        )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def read_root():
    logger.info("Root endpoint accessed")
    return {"message": "SmartReader Library API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


app.include_router(library.router)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
