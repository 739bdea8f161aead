"""Application entry point for the ChangeoverHQ web API."""

from changeoverhq.webapp import create_app

app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
