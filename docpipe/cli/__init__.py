"""Command-line trigger surface for docpipe.

- ``python -m docpipe.cli`` -- register documents, run single stages or a
  full orchestrator pass, retry failed documents, list progress, and ask
  questions.  Commands share the API's composition root
  (``docpipe.main._build_all``).
"""
