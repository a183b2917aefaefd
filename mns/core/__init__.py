SERVICE_NAME = "mns"
