"""Local development entry point.

Usage:
    python run.py

Production runs the same factory under a WSGI server with threads, e.g.
    gunicorn --threads 8 "paybridge:create_app()"
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from paybridge import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    # threaded=True: a request waiting on a platform call never blocks others
    # use_reloader=False: the reloader would start a second session sweeper
    app.run(debug=True, host="0.0.0.0", port=5001, threaded=True, use_reloader=False)
