"""
Media Relay Backend - on-demand media transforms for automation workflows

This package provides a FastAPI-based web service that fetches remote media,
runs a single ffmpeg transform on it and publishes the result to an
S3-compatible object store (Cloudflare R2), returning a public URL. It enables:

- Burning SRT captions into portrait videos
- Extracting MP3 audio from videos
- Lossless trimming of clips to a target duration
- Relaying remote files into storage unchanged
- Listing, picking and deleting stored videos

Every request is an independent job: nothing is queued, persisted or retried,
and all temporary files are removed when the request ends.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - job_manager: Per-request job lifecycle and temporary file ownership
    - fetcher: Redirect-bounded downloads
    - transcoder: ffmpeg argument construction and timed execution
    - diagnostics: Duration and metadata parsing of ffmpeg output
    - s3_service: Object storage publishing and public URLs
    - configuration: Config loading and merging logic
    - utils: Key sanitization and filesystem utilities

Usage:
    Run the API server with:
        uvicorn media_relay_backend.main:app --host 0.0.0.0 --port 3000

    Or use the console script:
        media-relay-server
"""
