"""Flask web application for the sentinel dashboard and control API."""

import time  # For timestamps and simple cache control

import cv2  # For JPEG encoding
import flask  # Web server and templating

from .config import RESOLUTIONS  # Resolution choices for the selector
from .service import SentinelService  # Service providing frames and state


def create_app(service: SentinelService) -> flask.Flask:
    """Create and configure the Flask application.

    Args:
      service: `SentinelService` to read state from and send commands to.

    Returns:
      A Flask app instance with routes for dashboard, live view, and API.
    """
    app = flask.Flask(__name__)

    def render_panel(st: dict) -> str:
        return flask.render_template_string(
            _PANEL_TEMPLATE,
            st=st,
            history=[e.to_dict() for e in service.get_history()],
            resolutions=RESOLUTIONS,
            fmt_time=lambda ts: time.strftime("%H:%M:%S", time.localtime(ts)),
            ts=int(time.time()),
        )

    @app.route("/")
    def index():
        """Render the dashboard shell; the panel inside it is polled via /panel."""
        st = service.get_status()
        return flask.render_template_string(_INDEX_TEMPLATE, st=st, panel=render_panel(st))

    @app.route("/panel")
    def panel():
        """Render the status and history panel as an HTML fragment."""
        return render_panel(service.get_status())

    @app.route("/latest.jpg")
    def latest_jpg():
        """Serve the most recent frame as a JPEG image."""
        frame = service.get_latest_frame()
        if frame is None:
            return ("No frame yet", 503)
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), 80])
        if not ok:
            return ("Encode error", 500)
        return flask.Response(buf.tobytes(), mimetype="image/jpeg")

    @app.route("/stream.mjpg")
    def stream_mjpg():
        """Provide a multipart/x-mixed-replace MJPEG live stream."""
        def gen():
            boundary = b"--frame"
            while True:
                frame = service.get_latest_frame()
                if frame is None:
                    time.sleep(0.05)
                    continue
                ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), 70])
                if not ok:
                    continue
                yield boundary + b"\r\nContent-Type: image/jpeg\r\n\r\n" + buf.tobytes() + b"\r\n"
                time.sleep(0.1)

        return flask.Response(gen(), mimetype="multipart/x-mixed-replace; boundary=frame")

    @app.route("/api/state")
    def api_state():
        """Return the current service state as JSON."""
        return service.get_status()

    @app.route("/api/history")
    def api_history():
        """Return recent events, newest first."""
        return {"events": [e.to_dict() for e in service.get_history()]}

    @app.route("/api/activate", methods=["POST"])
    def api_activate():
        """Arm the scan loop; 503 if the camera cannot be acquired."""
        if not service.activate():
            return {"ok": False, "error": service.get_status()["capture_error"]}, 503
        return {"ok": True, "state": service.get_status()}

    @app.route("/api/deactivate", methods=["POST"])
    def api_deactivate():
        service.deactivate()
        return {"ok": True, "state": service.get_status()}

    @app.route("/api/scan", methods=["POST"])
    def api_scan():
        """Force one immediate analysis; 409 if rejected."""
        if not service.trigger_manual():
            return {"ok": False, "error": "scan rejected (inactive, busy, or no frame yet)"}, 409
        return {"ok": True, "state": service.get_status()}

    @app.route("/api/sound", methods=["POST"])
    def api_sound():
        """Set `{"enabled": bool}` or toggle when omitted."""
        body = flask.request.get_json(silent=True) or {}
        enabled = body.get("enabled")
        if enabled is None:
            enabled = not service.alerts.sound_enabled
        elif not isinstance(enabled, bool):
            return {"ok": False, "error": "'enabled' must be a boolean"}, 400
        service.set_sound(enabled)
        return {"ok": True, "sound_enabled": service.alerts.sound_enabled}

    @app.route("/api/resolution", methods=["POST"])
    def api_resolution():
        """Switch capture resolution (`{"resolution": "HD"|"FHD"|"UHD"}`)."""
        body = flask.request.get_json(silent=True) or {}
        try:
            ok = service.set_resolution(body.get("resolution", ""))
        except ValueError as e:
            return {"ok": False, "error": str(e)}, 400
        if not ok:
            return {"ok": False, "error": service.get_status()["capture_error"]}, 503
        return {"ok": True, "resolution": service.resolution.key}

    return app


_INDEX_TEMPLATE = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Sentinel</title>
  <style>
    body { font-family: system-ui, Arial, sans-serif; margin: 0; background: #111; color: #eee; }
    header { padding: 12px 16px; background: #222; display: flex; align-items: center; justify-content: space-between; gap: 12px; }
    .alert { padding: 8px 12px; border-radius: 6px; font-weight: bold; }
    .alert.on { background: #b00020; color: #fff; }
    .alert.off { background: #2a2a2a; color: #aaa; }
    .arm { padding: 6px 10px; border-radius: 6px; font-weight: 600; font-size: 12px; }
    .arm.on { background: #144d14; color: #bff5bf; }
    .arm.off { background: #3a3a3a; color: #bbb; }
    .pill { padding: 4px 8px; border-radius: 999px; font-weight: 600; font-size: 11px; background: #2a2a2a; color: #bbb; border: 1px solid #444; }
    .err { background: #441111; color: #ff9a9a; padding: 8px 12px; border-radius: 6px; margin-bottom: 12px; }
    main { padding: 16px; display: grid; gap: 16px; grid-template-columns: repeat(auto-fit, minmax(320px, 1fr)); }
    .card { background: #1b1b1b; padding: 8px; border-radius: 8px; }
    img { width: 100%; height: auto; border-radius: 6px; display: block; }
    button, select { background: #2a2a2a; color: #eee; border: 1px solid #444; border-radius: 6px; padding: 6px 10px; }
    .meta { color: #9aa; font-size: 12px; }
    .ev { border-left: 4px solid #444; padding: 4px 8px; margin: 6px 0; }
    .ev.person_detected { border-color: #b00020; }
    .ev.no_person { border-color: #1f8f3a; }
    .ev.cooldown { border-color: #c98b00; }
    .ev.error { border-color: #ff5f5f; }
  </style>
</head>
<body>
  <div id="panel">{{ panel|safe }}</div>
  <script>
    var ALERT_KEY = 'sentinel.lastAlertTs';
    var audioCtx = null;

    // Browsers keep audio suspended until a user gesture resumes it
    function unlockAudio() {
      var Ctx = window.AudioContext || window.webkitAudioContext;
      if (!Ctx) return;
      if (!audioCtx) audioCtx = new Ctx();
      if (audioCtx.state === 'suspended') audioCtx.resume();
    }
    document.addEventListener('click', unlockAudio);

    function siren() {
      if (!audioCtx || audioCtx.state !== 'running') return;
      var ctx = audioCtx, osc = ctx.createOscillator(), gain = ctx.createGain();
      osc.type = 'sawtooth';
      osc.frequency.setValueAtTime(440, ctx.currentTime);
      osc.frequency.exponentialRampToValueAtTime(880, ctx.currentTime + 0.5);
      osc.frequency.exponentialRampToValueAtTime(440, ctx.currentTime + 1.0);
      gain.gain.setValueAtTime(0.1, ctx.currentTime);
      gain.gain.exponentialRampToValueAtTime(0.0001, ctx.currentTime + 1.5);
      osc.connect(gain); gain.connect(ctx.destination);
      osc.start(); osc.stop(ctx.currentTime + 1.5);
    }

    // One siren per alert: remember the newest alert timestamp already played
    function checkAlert(st) {
      var ts = st.last_alert_ts;
      if (!ts) return;
      var heard = parseFloat(sessionStorage.getItem(ALERT_KEY) || '0');
      if (ts <= heard) return;
      sessionStorage.setItem(ALERT_KEY, String(ts));
      if (st.sound_enabled) siren();
    }

    function refresh() {
      fetch('/panel').then(function (r) { return r.text(); })
        .then(function (html) { document.getElementById('panel').innerHTML = html; });
      fetch('/api/state').then(function (r) { return r.json(); }).then(checkAlert);
    }

    function post(url, body) {
      unlockAudio();
      fetch(url, {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body || {})})
        .then(refresh);
    }

    // Alerts raised before this tab opened are not replayed
    if (sessionStorage.getItem(ALERT_KEY) === null) {
      sessionStorage.setItem(ALERT_KEY, '{{ st.last_alert_ts or 0 }}');
    }
    setInterval(refresh, 5000);  // status and history every 5s
  </script>
</body>
</html>
"""


_PANEL_TEMPLATE = """
  <header>
    <div style="display:flex; align-items:center; gap:8px">
      {% if st.active %}
        <span class="arm on">Armed</span>
      {% else %}
        <span class="arm off">Disarmed</span>
      {% endif %}
      <span class="pill">{{ st.phase }}</span>
      <span class="pill">Interval {{ (st.current_interval_ms / 1000) | round(1) }} s</span>
      {% if st.next_scan_in_sec is not none %}
        <span class="pill">Next scan {{ '%.1f' % st.next_scan_in_sec }} s</span>
      {% endif %}
      <span class="pill">Motion {{ '%.1f' % st.motion_level }}% / {{ '%.1f' % st.motion_threshold }}%</span>
    </div>
    {% if st.alert_active %}
      <div class="alert on">PERSON DETECTED</div>
    {% else %}
      <div class="alert off">Idle</div>
    {% endif %}
  </header>
  <main>
    <div class="card">
      {% if st.capture_error %}<div class="err">{{ st.capture_error }}</div>{% endif %}
      <img src="/latest.jpg?ts={{ts}}" alt="Latest frame" />
      <div style="display:flex; gap:8px; margin-top:8px; flex-wrap:wrap">
        {% if st.active %}
          <button onclick="post('/api/deactivate')">Disarm</button>
          <button onclick="post('/api/scan')" {% if st.busy %}disabled{% endif %}>Manual scan</button>
        {% else %}
          <button onclick="post('/api/activate')">Arm</button>
        {% endif %}
        <button onclick="post('/api/sound')">Sound: {{ 'on' if st.sound_enabled else 'muted' }}</button>
        <select onchange="post('/api/resolution', {resolution: this.value})">
          {% for key, res in resolutions.items() %}
            <option value="{{ key }}" {% if key == st.resolution %}selected{% endif %}>{{ res.label }}</option>
          {% endfor %}
        </select>
      </div>
      <div class="meta">Frames: {{ st.total_frames }} &nbsp; | &nbsp; Analyses: {{ st.analysis_count }}</div>
    </div>
    <div class="card">
      <h3>Risk analysis</h3>
      {% if st.busy %}<div class="meta">Analyzing...</div>{% endif %}
      {% for e in history %}
        <div class="ev {{ e.status }}">
          <strong>{{ e.message }}</strong>
          {% if e.confidence is not none %}<span class="meta">({{ '%.0f' % e.confidence }}%)</span>{% endif %}
          <div class="meta">{{ fmt_time(e.timestamp) }} &nbsp; {{ e.description or '' }}</div>
        </div>
      {% else %}
        <div class="meta">No scans yet.</div>
      {% endfor %}
    </div>
  </main>
"""
