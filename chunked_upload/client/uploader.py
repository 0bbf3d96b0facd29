"""Chunked upload client with a bounded pool of parallel part uploads."""
import argparse
import logging
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
CHUNK_SIZE = 5 * 1024 * 1024  # 5MB
CONCURRENCY = 3  # Parts in flight at once
MAX_RETRIES = 2  # Extra attempts per part

ProgressCallback = Callable[[int, int], None]


class UploadFailed(Exception):
    """A server call failed or parts were still missing after retries."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        upload_id: Optional[str] = None,
        failed_parts: Optional[List[int]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.upload_id = upload_id
        self.failed_parts = sorted(failed_parts or [])


class ChunkedUploader:
    """
    Client for uploading large files in parts.

    Parts are read lazily from disk and handed to a pool of `concurrency`
    workers; whenever one part finishes, the next pending index starts.
    Part uploads are idempotent on the server, so a failed part is simply
    sent again.
    """

    def __init__(
        self,
        api_url: str = API_BASE_URL,
        chunk_size: int = CHUNK_SIZE,
        concurrency: int = CONCURRENCY,
        max_retries: int = MAX_RETRIES,
        http=None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        self.api_url = api_url.rstrip("/")
        self.chunk_size = chunk_size
        self.concurrency = concurrency
        self.max_retries = max_retries
        # Anything with a requests-style post/get works, e.g. an authenticated Session
        self.http = http if http is not None else requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.api_url}/api/upload{path}"

    @staticmethod
    def _check(response, action: str) -> dict:
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise UploadFailed(f"{action} failed ({response.status_code}): {detail}", status_code=response.status_code)
        return response.json()

    def init_upload(self, filename: str, file_size: int) -> Tuple[str, int]:
        """Open an upload session. Returns (upload_id, total_chunks)."""
        response = self.http.post(
            self._url("/chunk/init"),
            json={"filename": filename, "fileSize": file_size, "chunkSize": self.chunk_size},
        )
        data = self._check(response, "Init")
        logger.info(f"Session initialized: {data['uploadId']} ({data['totalChunks']} chunks)")
        return data["uploadId"], data["totalChunks"]

    def get_status(self, upload_id: str) -> dict:
        response = self.http.get(self._url(f"/chunk/{upload_id}"))
        return self._check(response, "Status")

    def upload_part(self, upload_id: str, chunk_index: int, total_chunks: int, data: bytes) -> dict:
        """
        Upload a single part, retrying server and network failures.

        Client errors (4xx) are not retried; they will not go away.
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                response = self.http.post(
                    self._url("/chunk/upload"),
                    data={
                        "uploadId": upload_id,
                        "chunkIndex": str(chunk_index),
                        "totalChunks": str(total_chunks),
                    },
                    files={"chunk": (f"chunk_{chunk_index}", data, "application/octet-stream")},
                )
                return self._check(response, f"Chunk {chunk_index} upload")
            except UploadFailed as e:
                if e.status_code is not None and e.status_code < 500:
                    raise
                last_error = e
            except requests.RequestException as e:
                last_error = e
            logger.warning(f"Chunk {chunk_index} attempt {attempt + 1} failed: {last_error}")
        raise UploadFailed(
            f"Chunk {chunk_index} failed after {self.max_retries + 1} attempts: {last_error}",
            upload_id=upload_id,
            failed_parts=[chunk_index],
        )

    def merge(self, upload_id: str, filename: str) -> dict:
        """Ask the server to assemble the uploaded parts."""
        response = self.http.post(self._url("/chunk/merge"), json={"uploadId": upload_id, "filename": filename})
        return self._check(response, "Merge")

    def cancel(self, upload_id: str) -> dict:
        response = self.http.delete(self._url(f"/chunk/{upload_id}"))
        return self._check(response, "Cancel")

    def _read_part(self, file_path: Path, chunk_index: int) -> bytes:
        with open(file_path, "rb") as f:
            f.seek(chunk_index * self.chunk_size)
            return f.read(self.chunk_size)

    def _send_part(self, file_path: Path, upload_id: str, chunk_index: int, total_chunks: int) -> dict:
        data = self._read_part(file_path, chunk_index)
        return self.upload_part(upload_id, chunk_index, total_chunks, data)

    def upload_parts(
        self,
        file_path,
        upload_id: str,
        total_chunks: int,
        indices: Optional[Iterable[int]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[int]:
        """
        Upload the given part indices (all by default) with bounded concurrency.

        Returns the indices that still failed after retries.
        """
        file_path = Path(file_path)
        pending = list(range(total_chunks) if indices is None else indices)
        completed = 0
        failed: List[int] = []

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            futures = {
                executor.submit(self._send_part, file_path, upload_id, index, total_chunks): index
                for index in pending
            }

            for future in as_completed(futures):
                index = futures[future]
                try:
                    future.result()
                except (UploadFailed, OSError) as e:
                    logger.error(f"Chunk {index} failed: {e}")
                    failed.append(index)
                    continue
                completed += 1
                if on_progress is not None:
                    on_progress(completed, len(pending))

        return sorted(failed)

    def upload_file(self, file_path, on_progress: Optional[ProgressCallback] = None) -> dict:
        """
        Upload a file: init, parallel part upload, merge.

        Returns the merge response. Raises UploadFailed, carrying the upload
        id, when parts are still missing; merge is not attempted then.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        upload_id, total_chunks = self.init_upload(file_path.name, file_path.stat().st_size)
        failed = self.upload_parts(file_path, upload_id, total_chunks, on_progress=on_progress)
        if failed:
            raise UploadFailed(
                f"{len(failed)} chunk(s) failed to upload",
                upload_id=upload_id,
                failed_parts=failed,
            )
        return self.merge(upload_id, file_path.name)

    def resume(self, file_path, upload_id: str, on_progress: Optional[ProgressCallback] = None) -> dict:
        """Send only the parts the server is missing, then merge."""
        file_path = Path(file_path)
        status = self.get_status(upload_id)
        # Part offsets must follow the chunk size the session was opened with
        self.chunk_size = status["chunkSize"]
        missing = status["missingChunks"]
        logger.info(f"Resuming {upload_id}: {len(missing)}/{status['totalChunks']} chunks missing")
        failed = self.upload_parts(file_path, upload_id, status["totalChunks"], indices=missing, on_progress=on_progress)
        if failed:
            raise UploadFailed(
                f"{len(failed)} chunk(s) failed to upload",
                upload_id=upload_id,
                failed_parts=failed,
            )
        return self.merge(upload_id, file_path.name)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI for the chunked uploader."""
    parser = argparse.ArgumentParser(description="Upload a file in parallel chunks")
    parser.add_argument("file", help="Path of the file to upload")
    parser.add_argument("--api-url", default=API_BASE_URL)
    parser.add_argument("--chunk-size", type=int, default=CHUNK_SIZE, help="Chunk size in bytes")
    parser.add_argument("--concurrency", type=int, default=CONCURRENCY, help="Chunks uploaded in parallel")
    parser.add_argument("--retries", type=int, default=MAX_RETRIES, help="Extra attempts per chunk")
    parser.add_argument("--cookie", help="Session cookie as NAME=VALUE")
    parser.add_argument("--resume", metavar="UPLOAD_ID", help="Continue an existing upload session")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    http = requests.Session()
    if args.cookie:
        name, _, value = args.cookie.partition("=")
        http.cookies.set(name, value)

    uploader = ChunkedUploader(
        api_url=args.api_url,
        chunk_size=args.chunk_size,
        concurrency=args.concurrency,
        max_retries=args.retries,
        http=http,
    )

    def show_progress(done: int, total: int) -> None:
        print(f"  ✓ {done}/{total} chunks uploaded ({done / total * 100:.1f}%)")

    start_time = time.time()
    try:
        if args.resume:
            result = uploader.resume(args.file, args.resume, on_progress=show_progress)
        else:
            result = uploader.upload_file(args.file, on_progress=show_progress)
    except UploadFailed as e:
        print(f"\n✗ Upload failed: {e}")
        if e.upload_id:
            print(f"  Resume with: chunked-upload {args.file} --resume {e.upload_id}")
        return 1
    except (OSError, requests.RequestException) as e:
        print(f"\n✗ Upload failed: {e}")
        return 1

    upload_time = time.time() - start_time
    print(f"\n✓ Upload completed successfully!")
    print(f"  File: {result['url']}")
    print(f"  Size: {result['size']} bytes")
    print(f"  Time: {upload_time:.2f} seconds")
    return 0


if __name__ == "__main__":
    sys.exit(main())
