"""Static pages served to the browser after the redirect."""

from __future__ import annotations

_STYLE = """
      body {
        font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
        display: flex;
        justify-content: center;
        align-items: center;
        height: 100vh;
        margin: 0;
        background: #1a1a2e;
        color: #eeeeee;
      }
      .container { text-align: center; padding: 2rem; }
      .mark { font-size: 3rem; margin-bottom: 1rem; }
      .success { color: #10b981; }
      .error { color: #ef4444; }
      h1 { margin: 0 0 1rem 0; }
      p { color: #888888; }
"""


def _page(title: str, mark_class: str, mark: str, message: str) -> str:
    return f"""<!doctype html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>{_STYLE}    </style>
  </head>
  <body>
    <div class="container">
      <div class="mark {mark_class}">{mark}</div>
      <h1>{title}</h1>
      <p>{message}</p>
    </div>
  </body>
</html>
"""


SUCCESS_HTML = _page(
    "Authentication Successful",
    "success",
    "&#10003;",
    "You can close this window and return to the application.",
)

FAILURE_HTML = _page(
    "Authentication Failed",
    "error",
    "&#10007;",
    "Please close this window and try again in the application.",
)
