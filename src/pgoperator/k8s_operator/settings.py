import os

running_pod_name = os.getenv('POD_NAME', 'unknown-pod-name')

operator_log_level = os.getenv('PGOPERATOR_LOG_LEVEL', None)
