from commissions.models.user import User
from commissions.models.category import Category
from commissions.models.special_request import SpecialRequest, RequestStatus, RequestType, Priority
from commissions.models.milestone import Milestone, MilestoneStatus
from commissions.models.revision import Revision
from commissions.models.progress_update import ProgressUpdate
from commissions.models.notification import Notification
