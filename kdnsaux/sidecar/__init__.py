"""Sidecar options, and counters, histograms and HTTP routes for exporting metrics."""