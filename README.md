# hanihunter

A Python library for downloading anime videos. It includes:

- site resolvers that turn a watch page or playlist link into the list of
  available videos and qualities (`hanihunter.resolvers`)
- a downloader for single files, with resume and retry, and for encrypted m3u8
  streams, which it fetches in parallel, decrypts and merges with `ffmpeg`
  (`hanihunter.downloader`)
- text progress bars for downloads (`hanihunter.tui.progressbar`)
- bookkeeping for download tasks: requests, progress events, logs, status and
  saved form settings (`hanihunter.webui_tasks`)

## Installation

```
pip install .
```

Merging m3u8 segments needs `ffmpeg` on your `PATH`.

## Resolving and downloading

```python
from hanihunter.resolvers.base import ResolveOption
from hanihunter.resolvers.registry import resolve
from hanihunter.downloader import Downloader, DownloadOption

animes = resolve("https://hanime1.me/watch?v=12345", ResolveOption(series=False))
downloader = Downloader(DownloadOption(output_dir="videos", retry=10, threads=20))
for anime in animes:
    downloader.download(anime)
```

`resolve` picks a resolver by the link's host; `hanime1.me` and `hanime.tv`
are registered by `build_registry()`. Other hosts raise
`UnsupportedSiteError`. With `ResolveOption(series=True)` every episode of the
series is resolved.

`Downloader.download` selects the largest video by default. Set
`DownloadOption.low_quality` to select the smallest one instead, or set
`quality` (for example `"720p"`) to ask for a particular quality. With
`info=True` it only logs the available videos. Files already present with the
expected size are skipped; partial single-file downloads are resumed.
`DownloadOption.progress_callback` receives `ProgressEvent` objects as the
download advances.

## Progress display

`ProgressModel` holds one `ProgressBar` per file. Pass its `update` method to
the downloader to feed it messages, and call `view()` to get the rendered text:

```python
from hanihunter.tui.progressbar import ProgressModel, WindowSizeMsg

model = ProgressModel()
model.update(WindowSizeMsg(width=100))
downloader = Downloader(DownloadOption(output_dir="videos"), send=model.update)
downloader.download(anime, model)
print(model.view())
```

`view()` returns an empty string until a `WindowSizeMsg` has set the width.

## Download tasks

`hanihunter.webui_tasks` models tasks for a task manager:

- `DownloadRequest.from_json` decodes a task request and rejects unknown
  fields or mistyped values with `ValueError`.
- `DownloadTask` tracks status (`TaskStatus`), logs (the last 2000 lines),
  progress and cancellation; `snapshot()` returns the task as a JSON-ready
  dictionary.
- `parse_progress_line` applies lines of the form
  `@@progress {"file": ..., "ratio": ...}` to a task.
- `build_command_args` builds the argument list for a `dl` download command.
- `load_settings`, `save_settings`, `normalize_settings` and
  `default_settings_path` keep the last used form values in a
  `webui-settings.json` file in the user configuration directory.

## What this package does not do

The package has no command-line program and no web server or browser page.
`webui_tasks` only holds and updates task state; it does not start download
processes, serve an HTTP API or render a page, and the `dl` command that
`build_command_args` targets is not part of this package.