#!/usr/bin/env python3
"""Development server runner for Old Man Footy."""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv


def setup_environment():
    """Set up the development environment."""
    project_root = Path(__file__).parent
    env_file = project_root / '.env'
    if env_file.exists():
        load_dotenv(env_file)
        print(f"Loaded environment from {env_file}")
    else:
        print(f"No .env file found at {env_file}")

    os.environ.setdefault('FLASK_APP', 'oldmanfooty:create_app')
    os.environ.setdefault('FLASK_DEBUG', '1')
    # No Redis in a bare dev setup: run manual syncs in the web process against the fixture
    os.environ.setdefault('MYSIDELINE_INLINE_RUNS', 'true')
    os.environ.setdefault('MYSIDELINE_USE_MOCK', 'true')


def run_development_server():
    """Run the Flask development server."""
    from oldmanfooty import create_app

    app = create_app()

    print("\n" + "=" * 60)
    print("Starting Old Man Footy Development Server")
    print("=" * 60)
    print(f"Database: {app.config['SQLALCHEMY_DATABASE_URI']}")
    print(f"MySideline mock mode: {app.config['MYSIDELINE_USE_MOCK']}")
    print("\nUseful commands in another terminal:")
    print("   flask user create --email admin@example.com --password secret --admin")
    print("   flask mysideline sync")
    print("   flask mysideline status --detailed")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 60)

    app.run(host='0.0.0.0', port=5000, debug=True, use_reloader=True)


def main():
    """Main function to set up and run the development server."""
    setup_environment()
    try:
        run_development_server()
    except KeyboardInterrupt:
        print("\nDevelopment server stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
