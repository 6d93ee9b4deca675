import logging

from flask import Flask, jsonify, render_template_string, request

from .config import DeobfuscatorConfig
from .deobfuscator import deobfuscate, normalize
from .errors import DeobfuscationError
from .logging_setup import configure_logging

logger = logging.getLogger(__name__)

INDEX_TEMPLATE = """<!doctype html>
<title>jsnormalize</title>
<form method="post">
  <textarea name="obfuscated_code" rows="20" cols="120">{{ obfuscated_code }}</textarea>
  <p><button type="submit">Deobfuscate</button></p>
</form>
{% if error %}<p class="error">{{ error }}</p>{% endif %}
{% if deobfuscated_code %}<pre>{{ deobfuscated_code }}</pre>{% endif %}
"""


def create_app(config=None):
    app = Flask(__name__)
    app.config["DEOBFUSCATOR"] = config or DeobfuscatorConfig.from_env()

    @app.route("/", methods=["GET", "POST"])
    def index():
        obfuscated_code = ""
        deobfuscated_code = ""
        error = None
        if request.method == "POST":
            obfuscated_code = request.form.get("obfuscated_code", "")
            if obfuscated_code:
                try:
                    deobfuscated_code = deobfuscate(obfuscated_code, app.config["DEOBFUSCATOR"]).cleaned
                except DeobfuscationError as e:
                    logger.warning("Deobfuscation failed: %s", e)
                    error = str(e)

        return render_template_string(
            INDEX_TEMPLATE,
            obfuscated_code=obfuscated_code,
            deobfuscated_code=deobfuscated_code,
            error=error,
        )

    @app.route("/api/deobfuscate", methods=["POST"])
    def api_deobfuscate():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Expected a JSON object"}), 400
        code = payload.get("code")
        if not code:
            return jsonify({"error": "Missing 'code'"}), 400
        if not isinstance(code, str):
            return jsonify({"error": "'code' must be a string"}), 400

        config = app.config["DEOBFUSCATOR"]
        try:
            if payload.get("normalize_only"):
                return jsonify({"cleaned": normalize(code, config), "parameters": None, "environment": None})
            result = deobfuscate(code, config)
        except DeobfuscationError as e:
            logger.warning("Deobfuscation failed: %s", e)
            return jsonify({"error": str(e)}), 400
        return jsonify(result._asdict())

    return app


if __name__ == "__main__":
    settings = DeobfuscatorConfig.from_env()
    configure_logging(settings.log_level)
    create_app(settings).run(host="0.0.0.0", port=8080, debug=True)
