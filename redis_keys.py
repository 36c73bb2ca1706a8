REDIS_MEETING_KEY = "meeting:meta:{meeting_id}" # meeting id - meeting record hash
REDIS_ACTIVE_CODE_KEY = "meeting:code:active:{code}" # meeting code - id of the active meeting holding it
REDIS_LATEST_CODE_KEY = "meeting:code:latest:{code}" # meeting code - id of the most recent meeting that used it
REDIS_CLASSROOM_ACTIVE_KEY = "meeting:classroom:active:{classroom_id}" # classroom id - id of its active meeting
REDIS_HOST_ACTIVE_KEY = "meeting:host:active:{host_user_id}" # host user id - id of their active ad-hoc meeting

REDIS_CLASSROOM_KEY = "classroom:meta:{classroom_id}" # classroom id - hash (name, teacher_id)
REDIS_CLASSROOM_MEMBERS_KEY = "classroom:members:{classroom_id}" # classroom id - set of member user ids

# **Example `meeting:meta:{id}` hash fields**
# - `meeting_id` = uuid4 string (durable identifier, embedded in join tokens)
# - `meeting_code` = 6 char code, unique among active meetings only
# - `title` = string
# - `host_user_id` = integer
# - `classroom_id` = integer, absent for ad-hoc meetings
# - `active` = "true" / "false"
# - `created_at` / `ended_at` = ISO timestamps
