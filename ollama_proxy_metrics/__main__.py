import sys

from ollama_proxy_metrics.app.main import main

sys.exit(main())
