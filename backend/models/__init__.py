from models.academic_year import AcademicYear
from models.class_subject import ClassSubject
from models.period import Period
from models.pinned_slot import PinnedSlot
from models.room import Room
from models.room_unavailability import RoomUnavailability
from models.school import School
from models.school_class import SchoolClass
from models.school_level import SchoolLevel
from models.section import Section
from models.section_subject_requirement import SectionSubjectRequirement
from models.staff import Staff
from models.staff_subject_qualification import StaffSubjectQualification
from models.staff_unavailability import StaffUnavailability
from models.subject import Subject
from models.subject_school_level import SubjectSchoolLevel
from models.timetable_conflict import TimetableConflict
from models.timetable_entry import TimetableEntry
from models.timetable_run import TimetableRun

__all__ = [
	"AcademicYear",
	"ClassSubject",
	"Period",
	"PinnedSlot",
	"Room",
	"RoomUnavailability",
	"School",
	"SchoolClass",
	"SchoolLevel",
	"Section",
	"SectionSubjectRequirement",
	"Staff",
	"StaffSubjectQualification",
	"StaffUnavailability",
	"Subject",
	"SubjectSchoolLevel",
	"TimetableConflict",
	"TimetableEntry",
	"TimetableRun",
]
