import json

INTERCEPT_MARKER = "data-webproxy-intercept"


def _js_string(value: str) -> str:
    # Keep the literal from terminating the surrounding <script> element
    return json.dumps(value).replace("</", "<\\/")


def build_intercept_script(context) -> str:
    """
    Script injected into fully rewritten pages. It routes navigation that the
    static rewrite cannot see (clicks on links created by page script, form
    submissions, history updates, window.open) through the proxy.
    """
    return f"""<script {INTERCEPT_MARKER}>
(function () {{
  var PROXY_ENDPOINT = {_js_string(context.proxy_endpoint)};
  var MARKER = {_js_string(context.marker)};
  var BASE = {_js_string(context.target_url)};
  var SKIPPED = /^\\s*(#|javascript:|mailto:|tel:|data:|blob:|about:)/i;

  function unwrap(value) {{
    if (value.indexOf(MARKER) === -1) return value;
    try {{
      return new URL(value, window.location.href).searchParams.get("url") || value;
    }} catch (e) {{
      return value;
    }}
  }}

  function toProxy(raw) {{
    if (raw === undefined || raw === null || raw === "") return raw;
    var value = String(raw);
    if (value.indexOf(MARKER) !== -1 || SKIPPED.test(value)) return value;
    var absolute;
    try {{
      absolute = new URL(value, BASE);
    }} catch (e) {{
      return value;
    }}
    if (absolute.protocol !== "http:" && absolute.protocol !== "https:") return value;
    return PROXY_ENDPOINT + encodeURIComponent(absolute.href);
  }}

  document.addEventListener("click", function (event) {{
    var node = event.target;
    while (node && node.nodeName !== "A" && node.nodeName !== "AREA") {{
      node = node.parentNode;
    }}
    if (!node || !node.getAttribute) return;
    var link = node.getAttribute("href");
    if (!link) return;
    var proxied = toProxy(link);
    if (proxied !== link) node.setAttribute("href", proxied);
  }}, true);

  document.addEventListener("submit", function (event) {{
    var form = event.target;
    if (!form || form.nodeName !== "FORM") return;
    var action = form.getAttribute("action") || BASE;
    if (SKIPPED.test(action) && action.charAt(0) !== "#") return;
    var method = (form.getAttribute("method") || "get").toLowerCase();
    if (method === "get") {{
      var destination;
      try {{
        destination = new URL(unwrap(action), BASE);
      }} catch (e) {{
        return;
      }}
      if (destination.protocol !== "http:" && destination.protocol !== "https:") return;
      // A GET submission replaces the query string, which would drop ?url=
      destination.search = new URLSearchParams(new FormData(form)).toString();
      destination.hash = "";
      event.preventDefault();
      window.location.assign(toProxy(destination.href));
      return;
    }}
    form.setAttribute("action", toProxy(unwrap(action)));
  }}, true);

  ["pushState", "replaceState"].forEach(function (name) {{
    var original = window.history[name];
    if (typeof original !== "function") return;
    window.history[name] = function (state, title, location) {{
      if (typeof location === "string" || location instanceof URL) {{
        location = toProxy(String(location));
      }}
      return original.call(window.history, state, title, location);
    }};
  }});

  var originalOpen = window.open;
  if (typeof originalOpen === "function") {{
    window.open = function (location) {{
      var args = Array.prototype.slice.call(arguments);
      if (typeof location === "string" && location) args[0] = toProxy(location);
      return originalOpen.apply(window, args);
    }};
  }}
}})();
</script>"""
