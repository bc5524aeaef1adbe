TEST_BUCKET_NAME = "test-file-alloc-bucket"
TEST_FILE_BUCKET = "parts"
TEST_QUEUE_NAME = "test-file-alloc-jobs.fifo"
