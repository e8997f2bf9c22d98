"""Worker process: reads envelopes on stdin, writes envelopes on stdout."""
