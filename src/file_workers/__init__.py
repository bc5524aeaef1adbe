"""Queue consumer that runs the processing pipeline on uploaded files."""
