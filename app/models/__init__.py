from .user.user import User
from .trips.trip_model import Trip
from .trips.trip_member import TripMember
from .choices.choice_models import Choice, ChoiceItem, ChoiceSelection, ChoiceSelectionLine, ChoiceActivity
from .audit.event_log import EventLog
from .expense.expense_models import Expense, ExpenseItem, ExpenseSplit
